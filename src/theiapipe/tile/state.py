from __future__ import annotations

import logging
import tempfile
import warnings
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Sequence

import pandas as pd

from ..cfg import ReadConfig
from ..download.auth import Authenticator
from ..download.entries import ArtifactEntry, tile_name_from_filename
from ..download.http import TheiaHttpClient, build_download_url
from ..errors import (
    IntegrityMismatchError,
    MetadataParseError,
    UnknownBandError,
    UnsupportedOperationError,
)
from ..imaging.bands import select_band_entries
from ..imaging.radiometry import correction_for
from ..imaging.raster import Raster, read_raster, stack_rasters
from ..kinds import CollectionKind, guess_collection_kind, kind_info
from .archive import ArchiveAccessor, open_archive, top_level_dir
from .checksum import normalize_checksum, verify_checksum
from .metadata import BandEntry, TileMetadata, read_tile_metadata

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class TileStatus:
    """Local state of a tile archive. Replaced as a whole on every transition."""

    exists: bool = False
    checked: bool = False
    correct: bool = False
    extracted: bool = False


class Tile:
    """One Theia archive: local file, remote URL, expected MD5 and status.

    The status is computed on creation by running check(verify).
    """

    def __init__(
        self,
        path: Path,
        url: str,
        name: Optional[str] = None,
        checksum: Optional[str] = None,
        kind: "CollectionKind | str | None" = None,
        *,
        verify: bool = True,
        read_cfg: Optional[ReadConfig] = None,
    ):
        self.path = Path(path)
        self.url = url
        self.name = tile_name_from_filename(name or self.path.name)
        self.checksum = normalize_checksum(checksum)
        if kind is None:
            # cart entries do not carry the collection
            self.kind = guess_collection_kind(self.path)
        else:
            self.kind = CollectionKind.parse(kind)
        self.read_cfg = read_cfg or ReadConfig()

        self.status = TileStatus()
        self.extracted_path: Optional[Path] = None
        self.integrity_error: Optional[IntegrityMismatchError] = None
        self._metadata: Optional[TileMetadata] = None

        self.check(verify)

    @classmethod
    def from_entry(
        cls,
        entry: ArtifactEntry,
        out_dir: Path,
        *,
        verify: bool = True,
        read_cfg: Optional[ReadConfig] = None,
    ) -> "Tile":
        return cls(
            Path(out_dir) / entry.name,
            entry.url,
            name=entry.name,
            checksum=entry.checksum,
            kind=entry.kind,
            verify=verify,
            read_cfg=read_cfg,
        )

    def __repr__(self) -> str:
        s = self.status
        return (
            f"Tile({self.name!r}, kind={self.kind.value}, exists={s.exists}, "
            f"checked={s.checked}, correct={s.correct}, extracted={s.extracted})"
        )

    # state machine ---------------------------------------------------------

    def _trust(self) -> None:
        self.status = replace(self.status, exists=True, checked=False, correct=True)

    def check(self, verify: bool = True) -> TileStatus:
        """Refresh the status from the file on disk.

        Without verify an existing file is trusted and never hashed. A missing
        file resets exists/checked/correct; the extraction flag is kept.
        """
        if not self.path.exists():
            self.status = TileStatus(extracted=self.status.extracted)
            self.integrity_error = None
            return self.status

        if not verify:
            log.info(
                "Assuming %s is correctly downloaded. Use verify=True to check its hash",
                self.path,
            )
            self._trust()
            return self.status

        log.info("Checking downloaded file %s", self.path)
        if self.checksum is None:
            # collection does not provide hashes
            self.status = replace(self.status, exists=True, checked=True, correct=True)
            self.integrity_error = None
            return self.status

        ok, actual = verify_checksum(self.path, self.checksum)
        self.status = replace(self.status, exists=True, checked=True, correct=ok)
        if ok:
            self.integrity_error = None
        else:
            err = IntegrityMismatchError(str(self.path), self.checksum, actual)
            self.integrity_error = err
            log.warning("%s", err)
            warnings.warn(err, stacklevel=2)
        return self.status

    def download(
        self,
        auth: Authenticator,
        overwrite: bool = False,
        verify: bool = True,
        *,
        client: Optional[TheiaHttpClient] = None,
    ) -> bool:
        """Fetch the archive unless it is already known to be correct.

        Returns True when a network fetch happened. verify=False trusts the
        written file without hashing it. A fetch invalidates any earlier
        extraction.
        """
        fetched = False
        if not self.path.exists():
            self.check(verify)
        if not self.status.correct or overwrite:
            client = client or TheiaHttpClient()
            url = build_download_url(self.url, client.cfg.issuer_id)
            log.info("Downloading %s", self.name)
            client.stream_download(url, self.path, auth=auth)
            fetched = True
            self.status = replace(self.status, extracted=False)
            self.extracted_path = None
        else:
            log.info(
                "File %s already exists. Use overwrite=True to overwrite.", self.path
            )

        if verify:
            self.check(True)
        else:
            log.info(
                "Assuming %s is correctly downloaded. Use verify=True to check its hash",
                self.path,
            )
            self._trust()
        return fetched

    def _archive(self) -> ArchiveAccessor:
        if not self.path.exists():
            raise FileNotFoundError(f"Tile archive not found: {self.path}")
        return open_archive(self.path)

    def extract(self, overwrite: bool = False, dest_dir: Optional[Path] = None) -> Path:
        """Ensure the archive content is present on disk and return its directory."""
        dest = Path(dest_dir) if dest_dir is not None else self.path.parent
        archive = self._archive()
        target = dest / top_level_dir(archive.list_entries())

        if target.exists() and not overwrite:
            log.info("%s already exists. Use overwrite=True to overwrite", target)
        else:
            log.info("Extracting %s to %s", self.path.name, dest)
            archive.extract(dest)

        self.status = replace(self.status, extracted=True)
        self.extracted_path = target
        return target

    # metadata & bands ------------------------------------------------------

    @property
    def metadata(self) -> TileMetadata:
        if self._metadata is None:
            self._metadata = read_tile_metadata(self._archive(), kind=self.kind)
        return self._metadata

    @property
    def bands(self) -> tuple[BandEntry, ...]:
        return self.metadata.bands

    def band_table(self) -> pd.DataFrame:
        return self.metadata.to_frame()

    def _require_readable(self) -> None:
        if self.kind is CollectionKind.LANDSAT57:
            raise UnsupportedOperationError(
                "This feature is not available for Landsat57 collection. "
                "Extract the archive and read the bands with rasterio instead.",
                kind=self.kind,
            )
        if not kind_info(self.kind).readable:
            raise UnsupportedOperationError(
                f"Reading bands is not supported for collection {self.kind.value} "
                f"({self.path.name}).",
                kind=self.kind,
            )

    def read(self, bands: Sequence[str]) -> dict[str, Raster]:
        """Read bands straight from the archive and convert them to physical values.

        Only the requested band files are extracted, into a temporary directory.
        """
        self._require_readable()

        requested = list(dict.fromkeys(str(b) for b in bands))
        if not requested:
            raise ValueError("No bands requested.")

        md = self.metadata
        available = set(md.band_names)
        bad = [b for b in requested if b not in available]
        if bad:
            raise UnknownBandError(bad)

        info = kind_info(self.kind)
        archive = self._archive()
        found = select_band_entries(
            archive.list_entries(),
            requested,
            pattern=info.band_pattern,
            product=self.read_cfg.product,
        )
        missing = [b for b in requested if b not in found]
        if missing:
            raise MetadataParseError(
                f"Bands {missing} are listed in {md.source_entry} but no "
                f"{self.read_cfg.product} file was found in {self.path.name}."
            )

        corr = correction_for(self.kind, quantification_value=md.quantification_value)

        out: dict[str, Raster] = {}
        with tempfile.TemporaryDirectory(prefix="theiapipe-bands-") as tmp:
            tmp_dir = Path(tmp)
            archive.extract(tmp_dir, [found[b] for b in requested])
            for b in requested:
                out[b] = corr.apply(read_raster(tmp_dir / found[b], band_name=b))
        return out

    def read_stack(self, bands: Sequence[str]) -> Raster:
        """Same as read(), stacked into one (C, H, W) raster in request order."""
        rasters = self.read(bands)
        return stack_rasters(list(rasters.values()), band_names=list(rasters.keys()))
