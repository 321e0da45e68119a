from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePath
from typing import Literal, Optional


class CollectionKind(str, Enum):
    """Theia collections. Values are the catalog collection names."""

    SENTINEL2 = "SENTINEL2"
    LANDSAT = "LANDSAT"
    LANDSAT57 = "Landsat57"
    SPOT_WORLD_HERITAGE = "SpotWorldHeritage"
    SNOW = "Snow"
    VENUS = "VENUS"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: "str | CollectionKind") -> "CollectionKind":
        if isinstance(value, CollectionKind):
            return value
        v = str(value).strip()
        for k in cls:
            if k.value.lower() == v.lower() or k.name.lower() == v.lower():
                return k
        raise ValueError(f"Unknown collection kind: {value!r}")


MetadataSchema = Literal["legacy", "muscate", "none"]


@dataclass(frozen=True)
class KindInfo:
    """Per-collection properties.

    band_pattern is formatted with `product` and `band`, then matched against
    the end of archive entry names.
    scale/offset convert stored digital numbers: physical = dn * scale + offset.
    """

    schema: MetadataSchema
    readable: bool
    band_pattern: str = "_{product}_{band}.tif"
    scale: float = 1.0
    offset: float = 0.0
    nodata: Optional[float] = None


# MUSCATE L2A reflectances are int16 scaled by 10000, nodata -10000.
_MUSCATE_L2A = KindInfo(schema="muscate", readable=True, scale=1e-4, nodata=-10000.0)

KIND_INFO: dict[CollectionKind, KindInfo] = {
    CollectionKind.SENTINEL2: _MUSCATE_L2A,
    CollectionKind.LANDSAT: _MUSCATE_L2A,
    CollectionKind.SPOT_WORLD_HERITAGE: _MUSCATE_L2A,
    CollectionKind.VENUS: _MUSCATE_L2A,
    CollectionKind.SNOW: KindInfo(
        schema="muscate", readable=True, band_pattern="_{band}.tif", nodata=255.0
    ),
    CollectionKind.LANDSAT57: KindInfo(schema="legacy", readable=False),
    CollectionKind.UNKNOWN: KindInfo(schema="none", readable=False),
}


def kind_info(kind: CollectionKind) -> KindInfo:
    return KIND_INFO[kind]


# Order matters: snow products also start with a Sentinel-2 / Landsat prefix.
_FILENAME_RULES: tuple[tuple[re.Pattern[str], CollectionKind], ...] = (
    (re.compile(r"SNOW", re.IGNORECASE), CollectionKind.SNOW),
    (re.compile(r"^SENTINEL2[A-Z]?_", re.IGNORECASE), CollectionKind.SENTINEL2),
    (re.compile(r"^LANDSAT[57]_", re.IGNORECASE), CollectionKind.LANDSAT57),
    (re.compile(r"^LANDSAT\d", re.IGNORECASE), CollectionKind.LANDSAT),
    (re.compile(r"^SPOT\d", re.IGNORECASE), CollectionKind.SPOT_WORLD_HERITAGE),
    (re.compile(r"^VENUS", re.IGNORECASE), CollectionKind.VENUS),
)


def guess_collection_kind(path: str | PurePath) -> CollectionKind:
    """Infer the collection from an archive file name.

    Only meant for entries coming from a cart, where the collection is not
    given. Returns CollectionKind.UNKNOWN when no rule matches.
    """
    name = PurePath(str(path)).name
    for rx, kind in _FILENAME_RULES:
        if rx.search(name):
            return kind
    return CollectionKind.UNKNOWN
