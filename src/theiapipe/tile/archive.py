from __future__ import annotations

import tarfile
import zipfile
from pathlib import Path, PurePosixPath
from typing import Optional, Protocol, Sequence


class ArchiveAccessor(Protocol):
    path: Path

    def list_entries(self) -> list[str]: ...

    def extract(self, dest_dir: Path, names: Optional[Sequence[str]] = None) -> None: ...


def _check_inside(dest_dir: Path, name: str) -> None:
    """Reject entries that would be written outside dest_dir."""
    target = (dest_dir / name).resolve()
    try:
        target.relative_to(dest_dir.resolve())
    except ValueError as err:
        raise ValueError(f"Archive entry escapes destination: {name!r}") from err


class ZipArchive:
    def __init__(self, path: Path):
        self.path = Path(path)

    def list_entries(self) -> list[str]:
        with zipfile.ZipFile(self.path) as zf:
            return zf.namelist()

    def extract(self, dest_dir: Path, names: Optional[Sequence[str]] = None) -> None:
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(self.path) as zf:
            members = list(names) if names is not None else zf.namelist()
            for n in members:
                _check_inside(dest_dir, n)
            zf.extractall(dest_dir, members=members)


class TarArchive:
    def __init__(self, path: Path):
        self.path = Path(path)

    def list_entries(self) -> list[str]:
        with tarfile.open(self.path) as tf:
            return tf.getnames()

    def extract(self, dest_dir: Path, names: Optional[Sequence[str]] = None) -> None:
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        with tarfile.open(self.path) as tf:
            if names is None:
                members = tf.getmembers()
            else:
                members = [tf.getmember(n) for n in names]
            tf.extractall(dest_dir, members=members, filter="data")


def open_archive(path: Path) -> ArchiveAccessor:
    p = Path(path)
    name = p.name.lower()
    if name.endswith(".zip"):
        return ZipArchive(p)
    if name.endswith((".tar.gz", ".tgz", ".tar")):
        return TarArchive(p)
    raise ValueError(f"Unsupported archive format: {p}")


def top_level_dir(entries: Sequence[str]) -> str:
    """First path component of the first entry (the product directory)."""
    if not entries:
        raise ValueError("Archive is empty.")
    parts = PurePosixPath(entries[0]).parts
    if not parts:
        raise ValueError(f"Unexpected archive entry name: {entries[0]!r}")
    return parts[0]
