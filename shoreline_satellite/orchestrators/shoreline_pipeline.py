"""Shoreline extraction orchestrator.

Coordinates one run from composite to clipped products:

1. Build a temporal composite over the expanded AOI (catalog)
2. Classify water (per-sensor classifier)
3. Clean the mask (small-object removal, closing, opening)
4. Vectorize and keep coastal lines
5. Clip the mask and lines to the unbuffered AOI

Every run walks the state machine::

    idle -> building_composite -> classifying -> cleaning -> vectorizing
         -> clipping_to_aoi -> done

``failed`` is reachable from every step and records the error payload.
A run either publishes complete products or nothing; intermediates are
plain values and are discarded on failure or cancellation.

Runs are independent and share no state, so several AOIs or sensors can
be processed concurrently with ``run_batch``.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pyproj import Transformer
from shapely.ops import transform as shapely_transform

from shoreline_satellite.activities.classify_water import get_classifier
from shoreline_satellite.activities.vectorize_shoreline import clip_to_aoi, expanded_region
from shoreline_satellite.core.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_BASE_SECONDS,
    Sensor,
)
from shoreline_satellite.core.exceptions import ContractError, NoImageryError, PipelineError
from shoreline_satellite.models.imagery import CompositeRequest
from shoreline_satellite.orchestrators.phases import (
    cleanup_with_coarsening,
    vectorize_with_tiling,
    with_backend_retries,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from shoreline_satellite.backends.base import ComputeBackend
    from shoreline_satellite.core.config import RunConfiguration
    from shoreline_satellite.models.aoi import AreaOfInterest
    from shoreline_satellite.models.raster import CompositeRaster
    from shoreline_satellite.models.shoreline import ShorelineProducts
    from shoreline_satellite.providers.base import ImageryCatalog

logger = logging.getLogger("shoreline_satellite.orchestrators.shoreline_pipeline")


# ---------------------------------------------------------------------------
# Run state machine
# ---------------------------------------------------------------------------


class RunState(enum.Enum):
    IDLE = "idle"
    BUILDING_COMPOSITE = "building_composite"
    CLASSIFYING = "classifying"
    CLEANING = "cleaning"
    VECTORIZING = "vectorizing"
    CLIPPING_TO_AOI = "clipping_to_aoi"
    DONE = "done"
    FAILED = "failed"


_SEQUENCE: tuple[RunState, ...] = (
    RunState.IDLE,
    RunState.BUILDING_COMPOSITE,
    RunState.CLASSIFYING,
    RunState.CLEANING,
    RunState.VECTORIZING,
    RunState.CLIPPING_TO_AOI,
    RunState.DONE,
)

TERMINAL_STATES = frozenset({RunState.DONE, RunState.FAILED})


class RunTracker:
    """Records state transitions and per-step timings for one run."""

    def __init__(self) -> None:
        self.state = RunState.IDLE
        self.history: list[tuple[RunState, datetime]] = [(RunState.IDLE, datetime.now(UTC))]
        self.timings: dict[str, float] = {}
        self._step_started = time.perf_counter()

    def advance(self, state: RunState) -> None:
        """Move to *state*.

        Raises:
            ContractError: If *state* is not the next step, or the run has
                already finished.
        """
        if self.state in TERMINAL_STATES:
            msg = f"Run already finished in state {self.state.value}"
            raise ContractError(msg, code="ILLEGAL_TRANSITION", stage=self.state.value)
        if state is not RunState.FAILED:
            expected = _SEQUENCE[_SEQUENCE.index(self.state) + 1]
            if state is not expected:
                msg = f"Illegal transition {self.state.value} -> {state.value}"
                raise ContractError(msg, code="ILLEGAL_TRANSITION", stage=self.state.value)
        now = time.perf_counter()
        if self.state is not RunState.IDLE:
            self.timings[self.state.value] = round(now - self._step_started, 6)
        self._step_started = now
        self.state = state
        self.history.append((state, datetime.now(UTC)))

    def fail(self) -> None:
        if self.state not in TERMINAL_STATES:
            self.advance(RunState.FAILED)


@dataclass(frozen=True)
class PipelineOutcome:
    """Result of one pipeline run.

    Attributes:
        state: Terminal state (``done`` or ``failed``).
        history: Ordered ``(state, entered_at)`` transitions.
        result: Products on success, ``None`` otherwise.
        error: ``PipelineError.to_error_dict()`` payload on failure.
        thresholds: Thresholds the classifier applied.
        timings: Seconds spent in each step.
        correlation_id: Run identifier carried into log lines and errors.
    """

    state: RunState
    history: tuple[tuple[RunState, datetime], ...]
    result: ShorelineProducts | None = None
    error: dict[str, object] | None = None
    thresholds: dict[str, float] = field(default_factory=dict)
    timings: dict[str, float] = field(default_factory=dict)
    correlation_id: str = ""

    @property
    def succeeded(self) -> bool:
        return self.state is RunState.DONE

    @property
    def states(self) -> list[RunState]:
        return [state for state, _ in self.history]

    def to_dict(self) -> dict[str, Any]:
        """Serialisable summary for logging and transport."""
        summary: dict[str, Any] = {
            "state": self.state.value,
            "correlation_id": self.correlation_id,
            "history": [
                {"state": state.value, "at": at.isoformat()} for state, at in self.history
            ],
            "thresholds": dict(self.thresholds),
            "timings": dict(self.timings),
            "error": self.error,
        }
        if self.result is not None:
            shoreline = self.result.shoreline
            summary["features"] = len(shoreline)
            summary["total_length_m"] = round(shoreline.total_length_m, 3)
            summary["water_pixels"] = self.result.water_mask.water_pixels
            summary["partial"] = shoreline.partial
            summary["dropped_tiles"] = list(shoreline.dropped_tiles)
            summary["dropped_features"] = shoreline.dropped_features
        return summary


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


async def run_shoreline_pipeline(
    aoi: AreaOfInterest,
    config: RunConfiguration,
    *,
    catalog: ImageryCatalog,
    backend: ComputeBackend,
    correlation_id: str = "",
    collection: str = "",
    max_retries: int = DEFAULT_MAX_RETRIES,
    retry_base_seconds: float = DEFAULT_RETRY_BASE_SECONDS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> PipelineOutcome:
    """Extract the shoreline of *aoi* with the sensor named in *config*.

    Domain failures never raise: they end the run in ``failed`` with the
    error payload on the outcome.  Cancellation propagates.

    Args:
        aoi: Area of interest.
        config: Validated run configuration.
        catalog: Imagery catalog building the composite.
        backend: Compute backend for raster and geometry primitives.
        correlation_id: Run identifier; generated when empty.
        collection: Catalog collection override.
        max_retries: Retries for an unavailable backend.
        retry_base_seconds: Exponential backoff base.
        sleep: Awaitable sleep (injectable for tests).
    """
    correlation_id = correlation_id or uuid.uuid4().hex
    tracker = RunTracker()
    thresholds: dict[str, float] = {}
    retry = {"max_retries": max_retries, "retry_base_seconds": retry_base_seconds, "sleep": sleep}

    logger.info(
        "Pipeline started | correlation_id=%s | aoi=%s | sensor=%s | method=%s | "
        "dates=%s..%s",
        correlation_id,
        aoi.name,
        config.sensor.value,
        config.composite_method.value,
        config.date_start or "-",
        config.date_end or "-",
    )

    try:
        tracker.advance(RunState.BUILDING_COMPOSITE)
        request = await build_composite_request(aoi, config, backend, collection=collection)
        raster = await catalog.composite(request)
        _require_imagery(raster, config)

        tracker.advance(RunState.CLASSIFYING)
        classifier = get_classifier(config.sensor)
        mask = await with_backend_retries(
            lambda: classifier.classify(raster, aoi, config, backend),
            max_retries=max_retries,
            base_delay=retry_base_seconds,
            sleep=sleep,
            operation="classify",
        )
        thresholds = dict(mask.thresholds)
        if mask.threshold is not None and not thresholds:
            thresholds[mask.method] = mask.threshold

        tracker.advance(RunState.CLEANING)
        cleaned = await cleanup_with_coarsening(mask, config, backend, **retry)

        tracker.advance(RunState.VECTORIZING)
        shoreline = await vectorize_with_tiling(cleaned, aoi, config, backend, **retry)

        tracker.advance(RunState.CLIPPING_TO_AOI)
        products = clip_to_aoi(cleaned, shoreline, aoi)

        tracker.advance(RunState.DONE)
    except asyncio.CancelledError:
        logger.warning(
            "Pipeline cancelled | correlation_id=%s | aoi=%s | state=%s",
            correlation_id,
            aoi.name,
            tracker.state.value,
        )
        raise
    except PipelineError as exc:
        failed_in = tracker.state.value
        exc.correlation_id = exc.correlation_id or correlation_id
        exc.with_context(aoi=aoi.name, sensor=config.sensor.value, step=failed_in)
        tracker.fail()
        logger.exception(
            "Pipeline failed | correlation_id=%s | aoi=%s | state=%s | code=%s | error=%s",
            correlation_id,
            aoi.name,
            failed_in,
            exc.code,
            exc.message,
        )
        return PipelineOutcome(
            state=RunState.FAILED,
            history=tuple(tracker.history),
            error=exc.to_error_dict(),
            thresholds=thresholds,
            timings=dict(tracker.timings),
            correlation_id=correlation_id,
        )
    except Exception:
        logger.exception(
            "Pipeline crashed | correlation_id=%s | aoi=%s | state=%s",
            correlation_id,
            aoi.name,
            tracker.state.value,
        )
        raise

    logger.info(
        "Pipeline completed | correlation_id=%s | aoi=%s | sensor=%s | features=%d | "
        "length=%.1f m | water_pixels=%d | partial=%s",
        correlation_id,
        aoi.name,
        config.sensor.value,
        len(products.shoreline),
        products.shoreline.total_length_m,
        products.water_mask.water_pixels,
        products.shoreline.partial,
    )
    return PipelineOutcome(
        state=RunState.DONE,
        history=tuple(tracker.history),
        result=products,
        thresholds=thresholds,
        timings=dict(tracker.timings),
        correlation_id=correlation_id,
    )


async def extract_radar_shoreline(
    aoi: AreaOfInterest,
    config: RunConfiguration,
    *,
    catalog: ImageryCatalog,
    backend: ComputeBackend,
    **kwargs: Any,
) -> PipelineOutcome:
    """Run the pipeline on radar backscatter (VV/VH voting)."""
    return await run_shoreline_pipeline(
        aoi, config.with_changes(sensor=Sensor.RADAR), catalog=catalog, backend=backend, **kwargs
    )


async def extract_optical_shoreline(
    aoi: AreaOfInterest,
    config: RunConfiguration,
    *,
    catalog: ImageryCatalog,
    backend: ComputeBackend,
    **kwargs: Any,
) -> PipelineOutcome:
    """Run the pipeline on optical reflectance with ``config.water_index``."""
    return await run_shoreline_pipeline(
        aoi,
        config.with_changes(sensor=Sensor.OPTICAL),
        catalog=catalog,
        backend=backend,
        **kwargs,
    )


async def extract_historical_shoreline(
    aoi: AreaOfInterest,
    config: RunConfiguration,
    *,
    catalog: ImageryCatalog,
    backend: ComputeBackend,
    **kwargs: Any,
) -> PipelineOutcome:
    """Run the pipeline on historical (Landsat AWEI) reflectance."""
    return await run_shoreline_pipeline(
        aoi,
        config.with_changes(sensor=Sensor.HISTORICAL),
        catalog=catalog,
        backend=backend,
        **kwargs,
    )


async def run_batch(
    jobs: Iterable[tuple[AreaOfInterest, RunConfiguration]],
    *,
    catalog: ImageryCatalog,
    backend: ComputeBackend,
    **kwargs: Any,
) -> list[PipelineOutcome]:
    """Run independent pipelines concurrently; outcomes follow *jobs* order."""
    return list(
        await asyncio.gather(
            *(
                run_shoreline_pipeline(aoi, config, catalog=catalog, backend=backend, **kwargs)
                for aoi, config in jobs
            )
        )
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def build_composite_request(
    aoi: AreaOfInterest,
    config: RunConfiguration,
    backend: ComputeBackend,
    *,
    collection: str = "",
) -> CompositeRequest:
    """Composite request covering the AOI expanded by ``aoi_buffer_m``."""
    region = await expanded_region(aoi, config, backend)
    to_wgs84 = Transformer.from_crs(aoi.crs, "EPSG:4326", always_xy=True)
    return CompositeRequest(
        sensor=config.sensor,
        geometry=shapely_transform(to_wgs84.transform, region),
        crs=aoi.crs,
        scale_m=config.scale,
        date_start=config.date_start,
        date_end=config.date_end,
        cloud_cover_ceiling=config.cloud_cover_ceiling,
        method=config.composite_method,
        collection=collection,
    )


def _require_imagery(raster: CompositeRaster, config: RunConfiguration) -> None:
    if raster.scene_count > 0:
        return
    msg = (
        f"No {config.sensor.value} scenes between {config.date_start or '..'} and "
        f"{config.date_end or '..'} under {config.cloud_cover_ceiling:.0f}% cloud"
    )
    raise NoImageryError(
        msg,
        context={
            "sensor": config.sensor.value,
            "date_start": str(config.date_start or ""),
            "date_end": str(config.date_end or ""),
            "cloud_cover_ceiling": config.cloud_cover_ceiling,
        },
    )
