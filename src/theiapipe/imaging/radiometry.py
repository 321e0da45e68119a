from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..kinds import CollectionKind, kind_info
from .raster import Raster


@dataclass(frozen=True)
class ValueCorrection:
    """Linear conversion from stored digital numbers to physical values.

    physical = dn * scale + offset; pixels equal to nodata become NaN.
    """

    scale: float = 1.0
    offset: float = 0.0
    nodata: Optional[float] = None

    def apply(self, raster: Raster) -> Raster:
        dn = np.asarray(raster.array)
        out = dn.astype(np.float32) * np.float32(self.scale) + np.float32(self.offset)

        nodata = self.nodata if self.nodata is not None else raster.nodata
        if nodata is not None:
            out[dn == nodata] = np.nan

        return Raster(
            array=out,
            grid=raster.grid,
            nodata=np.nan,
            band_names=raster.band_names,
        )


def correction_for(
    kind: CollectionKind, *, quantification_value: Optional[float] = None
) -> ValueCorrection:
    """Correction for a collection.

    A REFLECTANCE_QUANTIFICATION_VALUE found in the tile metadata takes
    precedence over the collection default scale.
    """
    info = kind_info(kind)
    scale = info.scale
    if quantification_value is not None and info.scale != 1.0:
        if quantification_value <= 0:
            raise ValueError(
                f"Invalid REFLECTANCE_QUANTIFICATION_VALUE: {quantification_value}"
            )
        scale = 1.0 / quantification_value
    return ValueCorrection(scale=scale, offset=info.offset, nodata=info.nodata)
