"""Data models.

Defines the data structures used throughout the pipeline:
- AreaOfInterest: WGS 84 polygon with its projected counterpart
- CompositeRequest / SceneRecord / ProviderConfig: Catalog layer
- CompositeRaster / Histogram / WaterMask / CleanedMask: Raster layer
- ShorelineFeature / ShorelineFeatureSet / ShorelineProducts: Outputs
"""

from shoreline_satellite.models.aoi import AOIError, AreaOfInterest
from shoreline_satellite.models.imagery import (
    CompositeRequest,
    ModelValidationError,
    ProviderConfig,
    SceneRecord,
)
from shoreline_satellite.models.raster import (
    CleanedMask,
    CompositeRaster,
    Histogram,
    WaterMask,
)
from shoreline_satellite.models.shoreline import (
    ShorelineFeature,
    ShorelineFeatureSet,
    ShorelineProducts,
)

__all__ = [
    "AOIError",
    "AreaOfInterest",
    "CleanedMask",
    "CompositeRaster",
    "CompositeRequest",
    "Histogram",
    "ModelValidationError",
    "ProviderConfig",
    "SceneRecord",
    "ShorelineFeature",
    "ShorelineFeatureSet",
    "ShorelineProducts",
    "WaterMask",
]
