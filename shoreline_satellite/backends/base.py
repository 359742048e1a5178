"""ComputeBackend abstract base class.

Defines the raster and geometry primitives the pipeline steps need.  The
classifiers, cleanup, and vectorizer talk exclusively to this interface;
a backend may evaluate locally (``LocalBackend``) or remotely.

Every primitive is a coroutine: a backend may block on I/O or hand
CPU-bound work to a thread, and it may time out.

Error contract:
    - ``ResourceLimitError``: the request is too large for the backend;
      the caller may retry coarser or on a smaller tile.
    - ``BackendUnavailableError``: evaluation timed out or failed
      transiently; the caller may retry with backoff.
"""

from __future__ import annotations

import abc
import enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import numpy as np
    from shapely.geometry import Polygon
    from shapely.geometry.base import BaseGeometry

    from shoreline_satellite.models.raster import CompositeRaster, Histogram, WaterMask


class FocalOp(enum.Enum):
    """Neighbourhood operation for ``focal_filter``."""

    MAX = "max"  # dilation
    MIN = "min"  # erosion


class ComputeBackend(abc.ABC):
    """Abstract base class for raster/geometry compute backends."""

    name: str = "abstract"

    # ------------------------------------------------------------------
    # Raster primitives
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def histogram(
        self,
        raster: CompositeRaster,
        band: str,
        geometry: BaseGeometry | None,
        scale: float,
    ) -> Histogram:
        """Histogram of *band* over valid pixels inside *geometry*.

        Args:
            raster: Source composite.
            band: Band name.
            geometry: Region in the raster CRS; ``None`` uses the whole
                valid footprint.
            scale: Sampling distance in metres (>= raster pixel size).

        Returns:
            A ``Histogram``; empty when no pixel qualifies.
        """

    @abc.abstractmethod
    async def focal_filter(
        self,
        mask: np.ndarray,
        kernel_radius: int,
        op: FocalOp,
        iterations: int,
    ) -> np.ndarray:
        """Apply a circular-kernel max or min filter *iterations* times."""

    @abc.abstractmethod
    async def connected_component_size(
        self,
        mask: np.ndarray,
        max_size: int,
        eight_connected: bool = True,
    ) -> np.ndarray:
        """Per-pixel size of the connected ``True`` component, capped at *max_size*.

        Background pixels report zero.
        """

    @abc.abstractmethod
    async def vectorize(
        self,
        mask: WaterMask,
        geometry: BaseGeometry | None,
        scale: float,
        eight_connected: bool = True,
    ) -> list[Polygon]:
        """Trace polygons around ``True`` regions of *mask* inside *geometry*.

        Returned polygons are valid; rings touching at a single vertex are
        split into separate polygons.
        """

    @abc.abstractmethod
    async def coarsen(self, mask: WaterMask, factor: int) -> WaterMask:
        """Reduce *mask* resolution by an integer *factor* (majority rule)."""

    # ------------------------------------------------------------------
    # Geometry primitives
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def geometry_buffer(self, geometry: BaseGeometry, distance: float) -> BaseGeometry:
        """Buffer *geometry* by *distance* metres (negative shrinks)."""

    @abc.abstractmethod
    async def geometry_difference(self, a: BaseGeometry, b: BaseGeometry) -> BaseGeometry:
        """Return ``a - b``."""

    @abc.abstractmethod
    async def geometry_intersects(
        self,
        a: BaseGeometry,
        b: BaseGeometry,
        error_margin: float,
    ) -> bool:
        """Whether *a* and *b* come within *error_margin* metres of each other."""
