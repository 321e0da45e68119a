from __future__ import annotations

import hashlib
import io
import tarfile
import zipfile
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Sequence

import numpy as np
import requests
import pytest
from affine import Affine

from theiapipe.imaging.raster import Raster, RasterGrid, write_geotiff


S2_PRODUCT = "SENTINEL2A_20180105-105107-457_L2A_T31TCJ_D_V1-4"
L57_PRODUCT = "LANDSAT5_TM_XS_20090810_N2A_France-MetropoleD0005H0003"


def md5_of(path: Path) -> str:
    return hashlib.md5(Path(path).read_bytes()).hexdigest()


def muscate_xml(
    groups: dict[str, Sequence[str]],
    *,
    product_id: str = S2_PRODUCT,
    quantification: float | None = 10000.0,
) -> str:
    group_xml = []
    for gid, bands in groups.items():
        ids = "".join(f"<BAND_ID>{b}</BAND_ID>" for b in bands)
        group_xml.append(
            f'<Group group_id="{gid}"><Band_List count="{len(bands)}">{ids}</Band_List></Group>'
        )
    radiometry = ""
    if quantification is not None:
        radiometry = (
            "<Radiometric_Informations>"
            f"<REFLECTANCE_QUANTIFICATION_VALUE>{quantification:g}</REFLECTANCE_QUANTIFICATION_VALUE>"
            "</Radiometric_Informations>"
        )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        "<Muscate_Metadata_Document>"
        "<Product_Characteristics>"
        f"<PRODUCT_ID>{product_id}</PRODUCT_ID>"
        "<ACQUISITION_DATE>2018-01-05T10:51:07.457Z</ACQUISITION_DATE>"
        f"<Band_Group_List>{''.join(group_xml)}</Band_Group_List>"
        "</Product_Characteristics>"
        f"{radiometry}"
        "</Muscate_Metadata_Document>"
    )


def legacy_xml(bands: Sequence[str]) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        "<METADATA>"
        f"<RADIOMETRY><BANDS>{';'.join(bands)}</BANDS></RADIOMETRY>"
        "</METADATA>"
    )


def dn_array(band_index: int, *, height: int = 3, width: int = 4) -> np.ndarray:
    a = np.full((height, width), 1000 * band_index, dtype=np.int16)
    a[0, 0] = -10000
    return a


def _grid(height: int, width: int, res: float = 10.0) -> RasterGrid:
    return RasterGrid(
        crs="EPSG:32631",
        transform=Affine(res, 0.0, 300000.0, 0.0, -res, 4900000.0),
        width=width,
        height=height,
        res=(res, res),
    )


def _tif_bytes(tmp_dir: Path, arr: np.ndarray, res: float = 10.0) -> bytes:
    p = tmp_dir / "band.tif"
    write_geotiff(p, Raster(array=arr, grid=_grid(*arr.shape, res=res)), nodata=-10000)
    data = p.read_bytes()
    p.unlink()
    return data


@pytest.fixture
def make_s2_archive(tmp_path: Path) -> Callable[..., Path]:
    """Factory building a MUSCATE-like zip archive.

    Band B<i> gets the constant digital number 1000*i (top-left pixel nodata).
    """
    scratch = tmp_path / "_scratch"
    scratch.mkdir()

    def _make(
        dst: Path,
        *,
        groups: dict[str, Sequence[str]] | None = None,
        product: str = S2_PRODUCT,
        products: Sequence[str] = ("FRE", "SRE"),
        xml: str | None = None,
        skip_files: Sequence[str] = (),
        res_by_group: dict[str, float] | None = None,
    ) -> Path:
        groups = groups or {"R1": ["B2", "B3", "B4"]}
        res_by_group = res_by_group or {}
        dst = Path(dst)
        dst.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(dst, "w") as zf:
            zf.writestr(f"{product}/", "")
            zf.writestr(
                f"{product}/{product}_MTD_ALL.xml", xml if xml is not None else muscate_xml(groups)
            )
            zf.writestr(f"{product}/MASKS/{product}_CLM_R1.tif", b"not a band")
            for gid, bands in groups.items():
                for b in bands:
                    if b in skip_files:
                        continue
                    idx = int("".join(ch for ch in b if ch.isdigit()) or 0)
                    data = _tif_bytes(scratch, dn_array(idx), res=res_by_group.get(gid, 10.0))
                    for prod in products:
                        zf.writestr(f"{product}/{product}_{prod}_{b}.tif", data)
        return dst

    return _make


@pytest.fixture
def make_l57_archive() -> Callable[..., Path]:
    def _make(dst: Path, *, bands: Sequence[str] = ("XS1", "XS2", "XS3", "SWIR")) -> Path:
        dst = Path(dst)
        dst.parent.mkdir(parents=True, exist_ok=True)
        payload = legacy_xml(bands).encode("utf-8")
        with tarfile.open(dst, "w:gz") as tf:
            info = tarfile.TarInfo(f"{L57_PRODUCT}/{L57_PRODUCT}.xml")
            info.size = len(payload)
            tf.addfile(info, io.BytesIO(payload))
        return dst

    return _make


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        body: bytes = b"",
        headers: dict[str, str] | None = None,
        reason: str = "OK",
        fail_after: int | None = None,
    ):
        self.status_code = status_code
        self.body = body
        self.headers = headers if headers is not None else {"Content-Type": "application/zip"}
        self.reason = reason
        self.fail_after = fail_after
        self.closed = False

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def iter_content(self, chunk_size: int = 1) -> Iterator[bytes]:
        sent = 0
        for i in range(0, len(self.body), chunk_size):
            if self.fail_after is not None and sent >= self.fail_after:
                raise requests.ConnectionError("connection reset")
            chunk = self.body[i : i + chunk_size]
            sent += len(chunk)
            yield chunk

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Replays queued responses and records each request."""

    def __init__(self, responses: Sequence[FakeResponse] | Callable[[str], FakeResponse]):
        self._responses = responses if callable(responses) else list(responses)
        self.calls: list[dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        if callable(self._responses):
            return self._responses(url)
        return self._responses.pop(0)


class FakeAuth:
    def __init__(self, token: str = "tok-1"):
        self.token = token
        self.calls = 0
        self.refreshed = 0
        self.stale_tokens: list[Optional[str]] = []

    def get_token(self) -> str:
        self.calls += 1
        return self.token

    def refresh(self, stale_token: Optional[str] = None) -> str:
        self.refreshed += 1
        self.stale_tokens.append(stale_token)
        self.token = f"tok-{self.refreshed + 1}"
        return self.token


@pytest.fixture
def fake_auth() -> FakeAuth:
    return FakeAuth()


@pytest.fixture
def fake_response() -> type[FakeResponse]:
    return FakeResponse


@pytest.fixture
def fake_session() -> type[FakeSession]:
    return FakeSession


@pytest.fixture
def md5() -> Callable[[Path], str]:
    return md5_of


@pytest.fixture
def s2_product() -> str:
    return S2_PRODUCT


@pytest.fixture
def make_muscate_xml() -> Callable[..., str]:
    return muscate_xml
