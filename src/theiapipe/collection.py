from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Sequence, TypeVar

import pandas as pd

from .cfg import ReadConfig
from .download.auth import Authenticator
from .download.cart import parse_cart
from .download.entries import ArtifactEntry, SearchFn, coerce_entry
from .download.http import TheiaHttpClient
from .errors import CollectionError, TheiaError
from .imaging.raster import Raster
from .tile.state import Tile, TileStatus

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class TileReadResult:
    tile: Tile
    bands: Optional[dict[str, Raster]] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TileCollection:
    """Ordered set of tiles sharing one download directory.

    Batch operations visit every member; failures are collected and raised
    together as a CollectionError once all members have been attempted.
    """

    def __init__(self, tiles: Sequence[Tile], out_dir: Path):
        self.out_dir = Path(out_dir)
        self.tiles: list[Tile] = list(tiles)

        seen: set[Path] = set()
        for t in self.tiles:
            p = t.path.resolve()
            if p in seen:
                raise ValueError(f"Two tiles share the same location: {t.path}")
            seen.add(p)

    def __len__(self) -> int:
        return len(self.tiles)

    def __iter__(self):
        return iter(self.tiles)

    def __getitem__(self, i: int) -> Tile:
        return self.tiles[i]

    def __repr__(self) -> str:
        return f"TileCollection({len(self.tiles)} tiles, out_dir={str(self.out_dir)!r})"

    # construction ----------------------------------------------------------

    @classmethod
    def from_entries(
        cls,
        entries: Iterable["ArtifactEntry | Sequence[Any]"],
        out_dir: Path,
        *,
        verify: bool = True,
        read_cfg: Optional[ReadConfig] = None,
    ) -> "TileCollection":
        out_dir = Path(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        tiles = [
            Tile.from_entry(coerce_entry(e), out_dir, verify=verify, read_cfg=read_cfg)
            for e in entries
        ]
        log.info("Collection of %d tiles in %s", len(tiles), out_dir)
        return cls(tiles, out_dir)

    @classmethod
    def from_query(
        cls,
        search: SearchFn,
        query: Any,
        out_dir: Path,
        *,
        verify: bool = True,
        read_cfg: Optional[ReadConfig] = None,
    ) -> "TileCollection":
        return cls.from_entries(search(query), out_dir, verify=verify, read_cfg=read_cfg)

    @classmethod
    def from_cart(
        cls,
        cart_path: Path,
        out_dir: Path,
        *,
        verify: bool = True,
        read_cfg: Optional[ReadConfig] = None,
    ) -> "TileCollection":
        return cls.from_entries(
            parse_cart(cart_path), out_dir, verify=verify, read_cfg=read_cfg
        )

    # status ----------------------------------------------------------------

    def status(self) -> list[tuple[str, TileStatus]]:
        return [(t.name, t.status) for t in self.tiles]

    def status_table(self) -> pd.DataFrame:
        rows = []
        for t in self.tiles:
            row: dict[str, Any] = {
                "tile": t.name,
                "collection": t.kind.value,
                "path": str(t.path),
            }
            row.update(asdict(t.status))
            rows.append(row)
        return pd.DataFrame(
            rows,
            columns=["tile", "collection", "path", "exists", "checked", "correct", "extracted"],
        )

    def export_status(self, csv_path: Path) -> Path:
        csv_path = Path(csv_path)
        csv_path.parent.mkdir(parents=True, exist_ok=True)
        self.status_table().to_csv(csv_path, index=False)
        return csv_path

    # batch operations ------------------------------------------------------

    def _run_all(
        self,
        operation: str,
        fn: Callable[[Tile], T],
        *,
        max_workers: int = 1,
    ) -> list[tuple[Tile, "T | None", Optional[Exception]]]:
        """Apply fn to every tile; never lets one failure stop the others.

        With max_workers > 1 tiles run on a bounded thread pool, one task per
        tile. Results keep member order.
        """
        results: list[tuple[Tile, "T | None", Optional[Exception]]] = [
            (t, None, None) for t in self.tiles
        ]

        def _one(i: int) -> None:
            t = self.tiles[i]
            try:
                results[i] = (t, fn(t), None)
            except TheiaError as e:
                log.warning("%s failed for tile %s: %s", operation, t.name, e)
                results[i] = (t, None, e)
            except Exception as e:
                log.exception("%s failed for tile %s", operation, t.name)
                results[i] = (t, None, e)

        if max_workers <= 1 or len(self.tiles) <= 1:
            for i in range(len(self.tiles)):
                _one(i)
        else:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                futures = [pool.submit(_one, i) for i in range(len(self.tiles))]
                for fut in as_completed(futures):
                    fut.result()

        return results

    @staticmethod
    def _raise_failures(operation: str, results: Sequence[tuple[Tile, Any, Optional[Exception]]]) -> None:
        failures = [(t, e) for t, _, e in results if e is not None]
        if failures:
            raise CollectionError(operation, failures)

    def download(
        self,
        auth: Authenticator,
        overwrite: bool = False,
        verify: bool = True,
        *,
        client: Optional[TheiaHttpClient] = None,
        max_workers: int = 1,
    ) -> "TileCollection":
        client = client or TheiaHttpClient()
        results = self._run_all(
            "download",
            lambda t: t.download(auth, overwrite=overwrite, verify=verify, client=client),
            max_workers=max_workers,
        )
        fetched = sum(1 for _, r, e in results if e is None and r)
        log.info(
            "Download pass done: %d fetched, %d skipped, %d failed",
            fetched,
            sum(1 for _, r, e in results if e is None and not r),
            sum(1 for _, _, e in results if e is not None),
        )
        self._raise_failures("download", results)
        return self

    def check(self, verify: bool = True) -> list[tuple[str, TileStatus]]:
        for t in self.tiles:
            t.check(verify)
        return self.status()

    def extract(
        self,
        overwrite: bool = False,
        dest_dir: Optional[Path] = None,
        *,
        max_workers: int = 1,
    ) -> list[Optional[Path]]:
        results = self._run_all(
            "extract",
            lambda t: t.extract(overwrite=overwrite, dest_dir=dest_dir),
            max_workers=max_workers,
        )
        self._raise_failures("extract", results)
        return [p for _, p, _ in results]

    def read(self, bands: Sequence[str], *, max_workers: int = 1) -> list[TileReadResult]:
        """Read bands from every tile. Per-tile errors are kept in the results."""
        results = self._run_all("read", lambda t: t.read(bands), max_workers=max_workers)
        return [TileReadResult(tile=t, bands=r, error=e) for t, r, e in results]
