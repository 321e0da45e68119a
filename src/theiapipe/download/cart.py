from __future__ import annotations

import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Optional

from .entries import ArtifactEntry

METALINK_NS = "urn:ietf:params:xml:ns:metalink"


def _local_tag(tag: str) -> str:
    if "}" in tag:
        return tag.split("}", 1)[1]
    return tag


def _child_text(el: ET.Element, local: str) -> Optional[str]:
    for c in el:
        if _local_tag(c.tag) == local and c.text and c.text.strip():
            return c.text.strip()
    return None


def parse_cart(path: Path) -> list[ArtifactEntry]:
    """Parse a Theia cart (Metalink 4, usually *.meta4) into artifact entries.

    The cart does not name the collection; entries come back with kind=None
    and the collection is guessed from the file name later.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Cart file not found: {p}")

    try:
        root = ET.parse(p).getroot()
    except ET.ParseError as e:
        raise ValueError(f"Malformed cart file {p}: {e}") from e

    out: list[ArtifactEntry] = []
    for f in root.iter():
        if _local_tag(f.tag) != "file":
            continue

        name = f.attrib.get("name")
        url = _child_text(f, "url")
        if not name or not url:
            raise ValueError(f"Cart entry without name or url in {p}")

        md5: Optional[str] = None
        for h in f:
            if _local_tag(h.tag) != "hash":
                continue
            if h.attrib.get("type", "").lower() in ("md5", "md-5") and h.text:
                md5 = h.text.strip().lower()
                break

        out.append(ArtifactEntry(name=name, url=url, checksum=md5))
    return out
