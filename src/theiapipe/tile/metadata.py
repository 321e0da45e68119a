from __future__ import annotations

import logging
import tempfile
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

import pandas as pd

from ..errors import MetadataParseError
from ..kinds import CollectionKind, MetadataSchema, kind_info
from .archive import ArchiveAccessor

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BandEntry:
    band: str
    resolution: str


@dataclass(frozen=True)
class TileMetadata:
    """Parsed tile descriptor with a schema-independent band table."""

    kind: CollectionKind
    source_entry: str
    root: ET.Element
    bands: tuple[BandEntry, ...]

    @property
    def band_names(self) -> list[str]:
        return [b.band for b in self.bands]

    def resolution_of(self, band: str) -> str:
        for b in self.bands:
            if b.band == band:
                return b.resolution
        raise KeyError(band)

    def find_text(self, tag: str) -> Optional[str]:
        """Text of the first element with the given local tag, stripped."""
        for el in _iter_by_local_tag(self.root, tag):
            if el.text is not None and el.text.strip():
                return el.text.strip()
        return None

    @property
    def product_id(self) -> Optional[str]:
        return self.find_text("PRODUCT_ID")

    @property
    def acquisition_date(self) -> Optional[str]:
        return self.find_text("ACQUISITION_DATE")

    @property
    def quantification_value(self) -> Optional[float]:
        txt = self.find_text("REFLECTANCE_QUANTIFICATION_VALUE")
        if txt is None:
            return None
        return _parse_float(txt, what="REFLECTANCE_QUANTIFICATION_VALUE")

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [{"band": b.band, "resolution": b.resolution} for b in self.bands],
            columns=["band", "resolution"],
        )


def _local_tag(tag: str) -> str:
    """Return local (namespace-shaved) tag name."""
    if "}" in tag:
        return tag.split("}", 1)[1]
    return tag


def _iter_by_local_tag(root: ET.Element, local: str) -> Iterable[ET.Element]:
    for el in root.iter():
        if _local_tag(el.tag) == local:
            yield el


def _children(el: ET.Element, local: str) -> list[ET.Element]:
    return [c for c in el if _local_tag(c.tag) == local]


def _parse_float(text: str, *, what: str) -> float:
    try:
        return float(text.strip())
    except ValueError as e:
        raise MetadataParseError(f"Failed to parse {what} as float: {text!r}") from e


def _bands_legacy(root: ET.Element) -> tuple[BandEntry, ...]:
    """Old format: RADIOMETRY/BANDS is a ';' separated list, single group R1."""
    for radiometry in _iter_by_local_tag(root, "RADIOMETRY"):
        for el in _children(radiometry, "BANDS"):
            names = [b.strip() for b in (el.text or "").split(";") if b.strip()]
            if names:
                return tuple(BandEntry(band=b, resolution="R1") for b in names)
    raise MetadataParseError("Missing RADIOMETRY/BANDS in legacy metadata.")


def _bands_muscate(root: ET.Element) -> tuple[BandEntry, ...]:
    """MUSCATE format: Band_Group_List/Group[@group_id]/Band_List/BAND_ID."""
    out: list[BandEntry] = []
    seen_list = False
    for pc in _iter_by_local_tag(root, "Product_Characteristics"):
        for bgl in _children(pc, "Band_Group_List"):
            seen_list = True
            for group in _children(bgl, "Group"):
                group_id = group.attrib.get("group_id")
                if not group_id:
                    raise MetadataParseError("Band group without group_id attribute.")
                for bl in _children(group, "Band_List"):
                    for bid in _children(bl, "BAND_ID"):
                        name = (bid.text or "").strip()
                        if name:
                            out.append(BandEntry(band=name, resolution=group_id))

    if not seen_list:
        raise MetadataParseError(
            "Missing Product_Characteristics/Band_Group_List in metadata."
        )
    return tuple(out)


def _bands_none(root: ET.Element) -> tuple[BandEntry, ...]:
    raise MetadataParseError(
        "Cannot read bands: collection kind is unknown, metadata schema undefined."
    )


_NORMALIZERS: dict[MetadataSchema, Callable[[ET.Element], tuple[BandEntry, ...]]] = {
    "legacy": _bands_legacy,
    "muscate": _bands_muscate,
    "none": _bands_none,
}


def select_descriptor_entry(entries: Sequence[str]) -> str:
    xml = [e for e in entries if e.lower().endswith(".xml")]
    if not xml:
        raise MetadataParseError("No .xml descriptor found in archive.")
    for e in xml:
        if e.endswith("_MTD_ALL.xml"):
            return e
    return xml[0]


def parse_descriptor(xml_path: Path, *, kind: CollectionKind, source_entry: str) -> TileMetadata:
    try:
        root = ET.parse(xml_path).getroot()
    except ET.ParseError as e:
        raise MetadataParseError(f"Malformed metadata {source_entry}: {e}") from e

    bands = _NORMALIZERS[kind_info(kind).schema](root)
    return TileMetadata(kind=kind, source_entry=source_entry, root=root, bands=bands)


def read_tile_metadata(archive: ArchiveAccessor, *, kind: CollectionKind) -> TileMetadata:
    """Extract the descriptor into a scratch dir, parse it, drop the scratch copy."""
    entry = select_descriptor_entry(archive.list_entries())
    log.info("Parsing meta data %s from %s", entry, archive.path)

    with tempfile.TemporaryDirectory(prefix="theiapipe-md-") as tmp:
        tmp_dir = Path(tmp)
        archive.extract(tmp_dir, [entry])
        return parse_descriptor(tmp_dir / entry, kind=kind, source_entry=entry)
