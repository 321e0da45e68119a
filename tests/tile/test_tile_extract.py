from __future__ import annotations

import os
from pathlib import Path

import pytest

from theiapipe.tile.state import Tile

URL = "https://theia.cnes.fr/atdistrib/resto2/collections/SENTINEL2/abc/download/"
NAME = "SENTINEL2A_20180105-105107-457_L2A_T31TCJ_D_V1-4.zip"


def _snapshot(root: Path) -> dict[str, int]:
    return {
        str(p.relative_to(root)): p.stat().st_mtime_ns
        for p in sorted(root.rglob("*"))
    }


def test_extract_defaults_next_to_archive(tmp_path: Path, make_s2_archive, s2_product):
    archive = make_s2_archive(tmp_path / "dl" / NAME)
    t = Tile(archive, URL)

    out = t.extract()

    assert out == tmp_path / "dl" / s2_product
    assert (out / f"{s2_product}_MTD_ALL.xml").is_file()
    assert (out / f"{s2_product}_FRE_B2.tif").is_file()
    assert t.status.extracted is True
    assert t.extracted_path == out


def test_extract_twice_is_idempotent(tmp_path: Path, make_s2_archive):
    archive = make_s2_archive(tmp_path / "dl" / NAME)
    t = Tile(archive, URL)
    dest = tmp_path / "extracted"

    first = t.extract(dest_dir=dest)
    before = _snapshot(dest)

    second = t.extract(dest_dir=dest)

    assert first == second
    assert _snapshot(dest) == before
    assert t.status.extracted is True


def test_extract_overwrite_rewrites_files(tmp_path: Path, make_s2_archive, s2_product):
    archive = make_s2_archive(tmp_path / "dl" / NAME)
    t = Tile(archive, URL)
    out = t.extract()

    xml = out / f"{s2_product}_MTD_ALL.xml"
    xml.write_text("edited", encoding="utf-8")
    os.utime(xml, ns=(0, 0))

    t.extract(overwrite=True)
    assert xml.read_text(encoding="utf-8") != "edited"


def test_extract_tar_archive(tmp_path: Path, make_l57_archive):
    archive = make_l57_archive(tmp_path / "LANDSAT5_TM_XS_20090810_N2A_France-MetropoleD0005H0003.tar.gz")
    t = Tile(archive, URL)

    out = t.extract(dest_dir=tmp_path / "x")
    assert out.is_dir()
    assert any(p.suffix == ".xml" for p in out.iterdir())


def test_extract_missing_archive_raises(tmp_path: Path):
    t = Tile(tmp_path / NAME, URL)
    with pytest.raises(FileNotFoundError):
        t.extract()
    assert t.status.extracted is False
    assert t.extracted_path is None
