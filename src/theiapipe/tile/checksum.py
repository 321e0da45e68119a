from __future__ import annotations

import hashlib
from pathlib import Path


def file_md5(path: Path, *, chunk_size: int = 8 * 1024 * 1024) -> str:
    """Hex MD5 of a file, read in chunks."""
    h = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            h.update(chunk)
    return h.hexdigest()


def normalize_checksum(value: str | None) -> str | None:
    if value is None:
        return None
    v = str(value).strip().lower()
    return v or None


def verify_checksum(path: Path, expected: str) -> tuple[bool, str]:
    """Return (matches, actual_md5)."""
    actual = file_md5(path)
    return actual == normalize_checksum(expected), actual
