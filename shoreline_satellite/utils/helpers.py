"""Shared helper functions used across multiple modules.

Centralises small pieces of raster logic needed by both the backend and
the vectorizer.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from rasterio import features as rio_features
from shapely.geometry import mapping

if TYPE_CHECKING:
    from rasterio.transform import Affine
    from shapely.geometry.base import BaseGeometry


def region_mask(
    shape: tuple[int, int],
    transform: Affine,
    geometry: BaseGeometry | None,
) -> np.ndarray:
    """Boolean array, ``True`` for pixels whose centre lies inside *geometry*.

    ``None`` selects every pixel; an empty geometry selects none.
    """
    if geometry is None:
        return np.ones(shape, dtype=bool)
    if geometry.is_empty:
        return np.zeros(shape, dtype=bool)
    return rio_features.geometry_mask(
        [mapping(geometry)], out_shape=shape, transform=transform, invert=True
    )
