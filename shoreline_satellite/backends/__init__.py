"""Compute backends.

- ComputeBackend: Abstract raster and geometry primitives
- LocalBackend: In-process numpy / scipy / rasterio / shapely backend
"""

from shoreline_satellite.backends.base import ComputeBackend, FocalOp
from shoreline_satellite.backends.local import LocalBackend

__all__ = [
    "ComputeBackend",
    "FocalOp",
    "LocalBackend",
]
