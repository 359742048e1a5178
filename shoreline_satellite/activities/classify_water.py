"""Water classification activity.

Turns a multi-band composite into a binary ``WaterMask``.  One strategy
per sensor family, selected with ``get_classifier(sensor)``:

- ``RadarVotingClassifier``: three indicators (VV, VH, linear VV/VH
  ratio), each thresholded with Otsu over the AOI; a pixel is water when
  at least ``sar_vote_threshold`` of them agree.
- ``OpticalIndexClassifier``: a named water index, thresholded either
  with the caller's ``water_threshold`` or with Otsu over the AOI.
- ``LandsatAWEIClassifier``: AWEI thresholded with Otsu over the whole
  composite footprint.

Every strategy raises ``NoValidHistogramError`` when its histogram is
empty or degenerate; the orchestrator reports that as a per-scene
failure.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from typing import TYPE_CHECKING

import numpy as np

from shoreline_satellite.activities.estimate_threshold import estimate_threshold
from shoreline_satellite.activities.water_indices import (
    compute_optical_index,
    landsat_awei,
    radar_ratio,
    water_is_below,
)
from shoreline_satellite.core.constants import (
    RADAR_PRIMARY_BAND,
    RADAR_RATIO_BAND,
    RADAR_SECONDARY_BAND,
    WATER_INDEX_BAND,
    Sensor,
)
from shoreline_satellite.core.exceptions import (
    ContractError,
    InsufficientDataError,
    NoValidHistogramError,
)
from shoreline_satellite.models.raster import WaterMask

if TYPE_CHECKING:
    from shapely.geometry.base import BaseGeometry

    from shoreline_satellite.backends.base import ComputeBackend
    from shoreline_satellite.core.config import RunConfiguration
    from shoreline_satellite.models.aoi import AreaOfInterest
    from shoreline_satellite.models.raster import CompositeRaster

logger = logging.getLogger("shoreline_satellite.activities.classify_water")


class WaterClassifier(abc.ABC):
    """Strategy interface: composite raster in, binary water mask out."""

    sensor: Sensor

    @abc.abstractmethod
    async def classify(
        self,
        raster: CompositeRaster,
        aoi: AreaOfInterest,
        config: RunConfiguration,
        backend: ComputeBackend,
    ) -> WaterMask:
        """Classify every valid pixel of *raster* as water or not."""

    async def _otsu(
        self,
        raster: CompositeRaster,
        band: str,
        geometry: BaseGeometry | None,
        scale: float,
        backend: ComputeBackend,
    ) -> float:
        histogram = await backend.histogram(raster, band, geometry, scale)
        try:
            return estimate_threshold(histogram)
        except InsufficientDataError as exc:
            msg = f"Classification impossible for this scene: band {band!r}: {exc.message}"
            raise NoValidHistogramError(
                msg,
                context={
                    "sensor": raster.sensor.value,
                    "band": band,
                    "buckets": len(histogram),
                    "scenes": list(raster.scene_ids),
                },
            ) from exc

    def _check_sensor(self, raster: CompositeRaster) -> None:
        if raster.sensor is not self.sensor:
            msg = (
                f"{type(self).__name__} expects a {self.sensor.value} composite, "
                f"got {raster.sensor.value}"
            )
            raise ContractError(msg, stage="classifying", code="SENSOR_MISMATCH")


class RadarVotingClassifier(WaterClassifier):
    """Multi-indicator voting over SAR backscatter (dB)."""

    sensor = Sensor.RADAR
    method = "radar_vote"

    async def classify(
        self,
        raster: CompositeRaster,
        aoi: AreaOfInterest,
        config: RunConfiguration,
        backend: ComputeBackend,
    ) -> WaterMask:
        self._check_sensor(raster)
        vv = raster.band(RADAR_PRIMARY_BAND)
        vh = raster.band(RADAR_SECONDARY_BAND)
        ratio = radar_ratio(vv, vh)
        augmented = raster.with_band(RADAR_RATIO_BAND, ratio)

        t_vv, t_vh, t_ratio = await asyncio.gather(
            self._otsu(augmented, RADAR_PRIMARY_BAND, aoi.projected, config.scale, backend),
            self._otsu(augmented, RADAR_SECONDARY_BAND, aoi.projected, config.scale, backend),
            self._otsu(augmented, RADAR_RATIO_BAND, aoi.projected, config.scale, backend),
        )

        # Water is dark in both polarisations and has a high co/cross ratio.
        votes = (
            (vv < t_vv).astype(np.int8)
            + (vh < t_vh).astype(np.int8)
            + (ratio > t_ratio).astype(np.int8)
        )
        water = (votes >= config.sar_vote_threshold) & raster.valid

        logger.info(
            "Radar classified | votes_required=%d | vv=%.3f | vh=%.3f | ratio=%.3f | "
            "water_pixels=%d",
            config.sar_vote_threshold,
            t_vv,
            t_vh,
            t_ratio,
            int(water.sum()),
        )
        return WaterMask(
            data=water,
            transform=raster.transform,
            crs=raster.crs,
            sensor=raster.sensor,
            method=self.method,
            thresholds={
                RADAR_PRIMARY_BAND: t_vv,
                RADAR_SECONDARY_BAND: t_vh,
                RADAR_RATIO_BAND: t_ratio,
            },
        )


class OpticalIndexClassifier(WaterClassifier):
    """Named water index with a custom or Otsu threshold."""

    sensor = Sensor.OPTICAL

    async def classify(
        self,
        raster: CompositeRaster,
        aoi: AreaOfInterest,
        config: RunConfiguration,
        backend: ComputeBackend,
    ) -> WaterMask:
        self._check_sensor(raster)
        try:
            index = compute_optical_index(config.water_index, raster.bands)
        except KeyError as exc:
            msg = f"Composite lacks band {exc.args[0]!r} needed by {config.water_index.value}"
            raise ContractError(msg, stage="classifying", code="MISSING_BAND") from exc

        if config.use_custom_threshold:
            threshold = config.water_threshold
        else:
            threshold = await self._otsu(
                raster.with_band(WATER_INDEX_BAND, index),
                WATER_INDEX_BAND,
                aoi.projected,
                config.scale,
                backend,
            )

        below = water_is_below(config.water_index)
        water = (index < threshold) if below else (index > threshold)
        water &= raster.valid

        logger.info(
            "Optical classified | index=%s | threshold=%.4f | custom=%s | water_pixels=%d",
            config.water_index.value,
            threshold,
            config.use_custom_threshold,
            int(water.sum()),
        )
        return WaterMask(
            data=water,
            transform=raster.transform,
            crs=raster.crs,
            sensor=raster.sensor,
            method=f"optical_{config.water_index.value}",
            threshold=threshold,
        )


class LandsatAWEIClassifier(WaterClassifier):
    """AWEI with an Otsu threshold over the composite footprint."""

    sensor = Sensor.HISTORICAL
    method = "landsat_awei"

    async def classify(
        self,
        raster: CompositeRaster,
        aoi: AreaOfInterest,
        config: RunConfiguration,
        backend: ComputeBackend,
    ) -> WaterMask:
        self._check_sensor(raster)
        try:
            awei = landsat_awei(raster.bands)
        except KeyError as exc:
            msg = f"Composite lacks band {exc.args[0]!r} needed by AWEI"
            raise ContractError(msg, stage="classifying", code="MISSING_BAND") from exc

        threshold = await self._otsu(
            raster.with_band(WATER_INDEX_BAND, awei),
            WATER_INDEX_BAND,
            None,
            config.scale,
            backend,
        )
        water = (awei > threshold) & raster.valid

        logger.info(
            "Landsat classified | threshold=%.4f | water_pixels=%d",
            threshold,
            int(water.sum()),
        )
        return WaterMask(
            data=water,
            transform=raster.transform,
            crs=raster.crs,
            sensor=raster.sensor,
            method=self.method,
            threshold=threshold,
        )


_CLASSIFIERS: dict[Sensor, type[WaterClassifier]] = {
    Sensor.RADAR: RadarVotingClassifier,
    Sensor.OPTICAL: OpticalIndexClassifier,
    Sensor.HISTORICAL: LandsatAWEIClassifier,
}


def get_classifier(sensor: Sensor | str) -> WaterClassifier:
    """Return the classifier for *sensor*.

    Raises:
        ValueError: If *sensor* is not a known sensor family.
    """
    return _CLASSIFIERS[Sensor(sensor)]()
