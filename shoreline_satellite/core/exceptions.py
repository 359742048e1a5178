"""Unified pipeline exception taxonomy.

Provides a shared base exception hierarchy for every pipeline step,
backend, and imagery catalog. Every domain exception inherits from
``PipelineError`` and carries structured context fields (failing step,
scene / tile identifiers) that enable consistent retry decisions and
operator diagnostics.

Taxonomy categories
-------------------
- ``ValidationError``: input/contract violations, never retryable.
- ``TransientError``: temporary failures (timeouts, size refusals), retryable.
- ``PermanentError``: unrecoverable failures for this scene, not retryable.
- ``ContractError``: payload/schema drift between steps, never retryable.

Domain errors
-------------
- ``NoImageryError``: catalog returned zero qualifying scenes.
- ``InsufficientDataError``: histogram had too few buckets or zero mass.
- ``NoValidHistogramError``: a classifier could not threshold its scene.
- ``ResourceLimitError``: backend refused a request as too large.
- ``BackendUnavailableError``: remote evaluation timed out or errored.
- ``InvalidGeometryError``: a produced polygon/line failed validity checks.

Every exception exposes ``to_error_dict()`` for a stable structured
error payload suitable for run history and logging.
"""

from __future__ import annotations

from collections.abc import Mapping


class PipelineError(Exception):
    """Base exception for all pipeline-domain errors.

    Attributes:
        message: Human-readable error description.
        stage: Pipeline step where the error occurred
            (e.g. ``"classifying"``, ``"vectorizing"``).
        code: Machine-readable error code (e.g. ``"NO_IMAGERY"``).
        retryable: Whether the orchestrator may retry the operation.
        correlation_id: Run correlation identifier.
        context: Scene / tile context (e.g. ``{"scene": "S2 median", "tile": 3}``).
    """

    #: Default stage for subclasses (override via class attribute or kwarg).
    default_stage: str = ""
    #: Default code for subclasses (override via class attribute or kwarg).
    default_code: str = ""

    def __init__(
        self,
        message: str = "",
        *,
        stage: str = "",
        code: str = "",
        retryable: bool = False,
        correlation_id: str = "",
        context: Mapping[str, object] | None = None,
    ) -> None:
        self.message = message
        self.stage = stage or self.default_stage
        self.code = code or self.default_code
        self.retryable = retryable
        self.correlation_id = correlation_id
        self.context: dict[str, object] = dict(context or {})
        super().__init__(message)

    @property
    def category(self) -> str:
        """Return the error category based on concrete class."""
        if isinstance(self, ContractError):
            return "contract"
        if isinstance(self, ValidationError):
            return "validation"
        if isinstance(self, TransientError):
            return "transient"
        if isinstance(self, PermanentError):
            return "permanent"
        return "transient" if self.retryable else "permanent"

    def with_context(self, **context: object) -> PipelineError:
        """Merge extra context into the error and return it (for re-raise)."""
        for key, value in context.items():
            self.context.setdefault(key, value)
        return self

    def to_error_dict(self) -> dict[str, object]:
        """Return a structured error payload with stable keys.

        Suitable for run history, logging, and presenting to the caller.
        """
        return {
            "category": self.category,
            "code": self.code,
            "stage": self.stage,
            "message": self.message,
            "retryable": self.retryable,
            "correlation_id": self.correlation_id,
            "context": dict(self.context),
        }


# ---------------------------------------------------------------------------
# Category base classes
# ---------------------------------------------------------------------------


class ValidationError(PipelineError):
    """Input or domain-model validation failure. Never retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class TransientError(PipelineError):
    """Temporary failure that may succeed on retry."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class PermanentError(PipelineError):
    """Unrecoverable domain failure. Not retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class ContractError(PipelineError):
    """Payload or schema drift between pipeline steps. Never retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Domain errors
# ---------------------------------------------------------------------------


class NoImageryError(PermanentError):
    """The imagery catalog returned zero qualifying scenes.

    Recoverable by the caller by widening the date range or raising the
    cloud-cover ceiling; never retried automatically.
    """

    default_stage = "building_composite"
    default_code = "NO_IMAGERY"


class InsufficientDataError(PermanentError):
    """A histogram had fewer than two buckets or zero total count."""

    default_stage = "estimate_threshold"
    default_code = "INSUFFICIENT_DATA"


class NoValidHistogramError(InsufficientDataError):
    """Classification is impossible for this scene (degenerate histogram)."""

    default_stage = "classifying"
    default_code = "NO_VALID_HISTOGRAM"


class ResourceLimitError(TransientError):
    """The backend refused a request as too large.

    Recoverable by retrying at a coarser scale or on a smaller tile.
    """

    default_stage = "backend"
    default_code = "RESOURCE_LIMIT"


class BackendUnavailableError(TransientError):
    """Remote evaluation timed out or failed transiently."""

    default_stage = "backend"
    default_code = "BACKEND_UNAVAILABLE"


class InvalidGeometryError(ValidationError):
    """A produced polygon or line failed basic validity checks."""

    default_stage = "vectorizing"
    default_code = "INVALID_GEOMETRY"
