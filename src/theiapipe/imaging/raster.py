from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

import numpy as np
import rasterio


@dataclass(frozen=True)
class RasterGrid:
    """Georeferencing of a raster."""

    crs: str | None
    transform: Any  # affine.Affine
    width: int
    height: int
    res: tuple[float, float]

    def shape_hw(self) -> tuple[int, int]:
        return (self.height, self.width)


@dataclass(frozen=True)
class Raster:
    """Band array with its grid.

    Single band: (H, W). Multi-band: (C, H, W), channel names in band_names.
    """

    array: Any
    grid: RasterGrid
    nodata: float | int | None = None
    band_names: list[str] | None = None

    def to_chw(self) -> np.ndarray:
        a = np.asarray(self.array)
        if a.ndim == 2:
            return a[np.newaxis, :, :]
        if a.ndim == 3:
            return a
        raise ValueError(f"Unsupported array ndim={a.ndim}; expected 2 or 3.")

    @property
    def nbands(self) -> int:
        return int(self.to_chw().shape[0])


def _grid_of(ds: Any) -> RasterGrid:
    resx, resy = ds.res
    return RasterGrid(
        crs=ds.crs.to_string() if ds.crs is not None else None,
        transform=ds.transform,
        width=int(ds.width),
        height=int(ds.height),
        res=(float(resx), float(resy)),
    )


def read_raster(path: Path, *, band_name: str | None = None) -> Raster:
    """Decode a raster file fully into memory.

    Single band files give an (H, W) array, others (C, H, W).
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(str(p))

    with rasterio.open(p) as ds:
        grid = _grid_of(ds)
        nodata = ds.nodata
        arr = ds.read(1) if ds.count == 1 else ds.read()

    return Raster(
        array=arr,
        grid=grid,
        nodata=nodata,
        band_names=[band_name] if band_name else None,
    )


def write_geotiff(
    path: Path,
    raster: Raster,
    *,
    nodata: float | int | None = None,
    dtype: str | None = None,
    compress: str = "deflate",
) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    grid = raster.grid
    arr = raster.to_chw()
    count, height, width = arr.shape
    if (height, width) != grid.shape_hw():
        raise ValueError(
            f"Array shape does not match grid: ({height},{width}) vs {grid.shape_hw()}"
        )

    out_dtype = dtype or str(arr.dtype)
    profile = {
        "driver": "GTiff",
        "height": height,
        "width": width,
        "count": count,
        "dtype": out_dtype,
        "crs": grid.crs,
        "transform": grid.transform,
        "nodata": nodata if nodata is not None else raster.nodata,
        "compress": compress,
    }
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(arr.astype(out_dtype, copy=False))


def assert_same_grid(grids: Sequence[RasterGrid]) -> None:
    if not grids:
        return
    g0 = grids[0]
    for g in grids[1:]:
        if g != g0:
            raise ValueError(
                "Grids are not identical; cannot stack bands of different resolution groups."
            )


def stack_rasters(rasters: Sequence[Raster], *, band_names: list[str] | None = None) -> Raster:
    """Stack rasters along the channel axis into one (C, H, W) Raster."""
    if not rasters:
        raise ValueError("No rasters provided to stack.")

    assert_same_grid([r.grid for r in rasters])
    stacked = np.concatenate([r.to_chw() for r in rasters], axis=0)

    if band_names is None:
        names: list[str] = []
        for r in rasters:
            if not r.band_names:
                names = []
                break
            names.extend(r.band_names)
        band_names = names or None

    return Raster(
        array=stacked,
        grid=rasters[0].grid,
        nodata=rasters[0].nodata,
        band_names=band_names,
    )
