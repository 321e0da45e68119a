from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Sequence

from ..kinds import CollectionKind

_ARCHIVE_EXT_RE = re.compile(r"(\.tar\.gz|\.tgz|\.tar|\.zip)$", re.IGNORECASE)


@dataclass(frozen=True)
class ArtifactEntry:
    """One catalog result: remote file name, URL, optional MD5, optional collection."""

    name: str
    url: str
    checksum: Optional[str] = None
    kind: Optional[CollectionKind] = None

    @property
    def tile_name(self) -> str:
        return tile_name_from_filename(self.name)


def tile_name_from_filename(filename: str) -> str:
    return _ARCHIVE_EXT_RE.sub("", filename)


# Catalog search is an external collaborator: any callable mapping a query
# to artifact entries (or plain (name, url, checksum, kind) tuples).
SearchFn = Callable[[Any], Iterable["ArtifactEntry | Sequence[Any]"]]


def coerce_entry(item: "ArtifactEntry | Sequence[Any]") -> ArtifactEntry:
    if isinstance(item, ArtifactEntry):
        return item
    if len(item) != 4:
        raise ValueError(
            f"Expected a (name, url, checksum, kind) tuple, got {len(item)} items."
        )
    name, url, checksum, kind = item
    return ArtifactEntry(
        name=str(name),
        url=str(url),
        checksum=str(checksum) if checksum else None,
        kind=CollectionKind.parse(kind) if kind else None,
    )
