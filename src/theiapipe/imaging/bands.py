from __future__ import annotations

from typing import Sequence


def band_suffix(pattern: str, *, band: str, product: str) -> str:
    return pattern.format(band=band, product=product)


def select_band_entries(
    entries: Sequence[str],
    bands: Sequence[str],
    *,
    pattern: str,
    product: str = "FRE",
) -> dict[str, str]:
    """Map each requested band to its archive entry.

    An entry matches when its file name ends with the band suffix, e.g.
    "..._FRE_B4.tif". Bands without a matching entry are left out.
    """
    out: dict[str, str] = {}
    for b in bands:
        suffix = band_suffix(pattern, band=b, product=product).lower()
        for e in entries:
            if e.endswith("/"):
                continue
            if e.lower().endswith(suffix):
                out[b] = e
                break
    return out
