"""Tests for the unified exception taxonomy.

Validates:
- PipelineError hierarchy and structured attributes
- Category classification (validation, transient, permanent, contract)
- ``to_error_dict()`` produces stable payload keys
- Retry semantics are consistent with taxonomy class
- All activity/provider exceptions are PipelineError subclasses
"""

from __future__ import annotations

from typing import ClassVar

from shoreline_satellite.activities.export_products import ExportError
from shoreline_satellite.core.config import ConfigValidationError
from shoreline_satellite.core.exceptions import (
    BackendUnavailableError,
    ContractError,
    InsufficientDataError,
    InvalidGeometryError,
    NoImageryError,
    NoValidHistogramError,
    PermanentError,
    PipelineError,
    ResourceLimitError,
    TransientError,
    ValidationError,
)
from shoreline_satellite.models.aoi import AOIError
from shoreline_satellite.models.imagery import ModelValidationError
from shoreline_satellite.providers.base import (
    ProviderAuthError,
    ProviderError,
    ProviderReadError,
    ProviderSearchError,
)


class TestPipelineErrorBase:
    """PipelineError base class behavior."""

    def test_default_attributes(self) -> None:
        err = PipelineError("boom")
        assert err.message == "boom"
        assert err.stage == ""
        assert err.code == ""
        assert err.retryable is False
        assert err.correlation_id == ""
        assert err.context == {}

    def test_custom_attributes(self) -> None:
        err = PipelineError(
            "fail",
            stage="vectorizing",
            code="TILE_FAILED",
            retryable=True,
            correlation_id="abc-123",
            context={"tile": 3},
        )
        assert err.stage == "vectorizing"
        assert err.code == "TILE_FAILED"
        assert err.retryable is True
        assert err.correlation_id == "abc-123"
        assert err.context == {"tile": 3}

    def test_str_is_message(self) -> None:
        err = PipelineError("human-readable error")
        assert str(err) == "human-readable error"

    def test_with_context_keeps_existing_keys(self) -> None:
        err = PipelineError("x", context={"scene": "S1 median"})
        returned = err.with_context(scene="other", tile=2)
        assert returned is err
        assert err.context == {"scene": "S1 median", "tile": 2}

    def test_to_error_dict_keys(self) -> None:
        err = PipelineError("x", stage="s", code="C", retryable=True, correlation_id="id")
        d = err.to_error_dict()
        assert set(d.keys()) == {
            "category",
            "code",
            "stage",
            "message",
            "retryable",
            "correlation_id",
            "context",
        }
        assert d["message"] == "x"
        assert d["retryable"] is True
        assert d["correlation_id"] == "id"


class TestCategoryBases:
    """Category base classes set correct defaults."""

    def test_validation_error_not_retryable(self) -> None:
        err = ValidationError("bad input")
        assert err.retryable is False
        assert err.category == "validation"

    def test_transient_error_retryable(self) -> None:
        err = TransientError("timeout")
        assert err.retryable is True
        assert err.category == "transient"

    def test_permanent_error_not_retryable(self) -> None:
        err = PermanentError("gone")
        assert err.retryable is False
        assert err.category == "permanent"

    def test_contract_error_not_retryable(self) -> None:
        err = ContractError("schema drift")
        assert err.retryable is False
        assert err.category == "contract"

    def test_dynamic_category_from_retryable(self) -> None:
        assert PipelineError("x", retryable=True).category == "transient"
        assert PipelineError("x", retryable=False).category == "permanent"


class TestAllExceptionsArePipelineError:
    """Every custom exception inherits from PipelineError."""

    EXCEPTION_CLASSES: ClassVar[list[type[PipelineError]]] = [
        NoImageryError,
        InsufficientDataError,
        NoValidHistogramError,
        ResourceLimitError,
        BackendUnavailableError,
        InvalidGeometryError,
        AOIError,
        ExportError,
        ConfigValidationError,
        ModelValidationError,
        ProviderError,
        ProviderAuthError,
        ProviderSearchError,
        ProviderReadError,
    ]

    def test_all_subclass_pipeline_error(self) -> None:
        for cls in self.EXCEPTION_CLASSES:
            assert issubclass(cls, PipelineError), f"{cls.__name__} is not a PipelineError"


class TestDomainErrorStageAndCode:
    """Every domain exception has a default stage and code."""

    def test_no_imagery(self) -> None:
        err = NoImageryError("nothing under 5% cloud")
        assert err.stage == "building_composite"
        assert err.code == "NO_IMAGERY"
        assert err.category == "permanent"

    def test_insufficient_data(self) -> None:
        err = InsufficientDataError("one bucket")
        assert err.stage == "estimate_threshold"
        assert err.code == "INSUFFICIENT_DATA"

    def test_no_valid_histogram_is_insufficient_data(self) -> None:
        err = NoValidHistogramError("uniform scene")
        assert isinstance(err, InsufficientDataError)
        assert err.stage == "classifying"
        assert err.code == "NO_VALID_HISTOGRAM"

    def test_resource_limit(self) -> None:
        err = ResourceLimitError("too many pixels")
        assert err.code == "RESOURCE_LIMIT"
        assert err.retryable is True

    def test_backend_unavailable(self) -> None:
        err = BackendUnavailableError("timed out")
        assert err.code == "BACKEND_UNAVAILABLE"
        assert err.category == "transient"

    def test_invalid_geometry(self) -> None:
        err = InvalidGeometryError("bow-tie ring")
        assert err.stage == "vectorizing"
        assert err.category == "validation"

    def test_aoi_error(self) -> None:
        err = AOIError("degenerate polygon")
        assert err.stage == "prepare_aoi"
        assert err.code == "INVALID_AOI"

    def test_export_error(self) -> None:
        err = ExportError("disk full")
        assert err.stage == "export"
        assert err.code == "EXPORT_FAILED"

    def test_config_validation_error(self) -> None:
        err = ConfigValidationError("CLOUD_COVER_CEILING", 200, "must be 0-100")
        assert err.stage == "config"
        assert err.code == "CONFIG_VALIDATION_FAILED"
        assert err.key == "CLOUD_COVER_CEILING"
        assert err.value == 200

    def test_model_validation_error(self) -> None:
        err = ModelValidationError("CompositeRequest", "scale_m", 0, "must be > 0")
        assert err.stage == "model_validation"
        assert err.code == "MODEL_VALIDATION_FAILED"
        assert isinstance(err, ValueError)
        assert "CompositeRequest.scale_m=0" in err.message


class TestProviderExceptionTaxonomy:
    """Provider exceptions carry stage, code, and provider info."""

    def test_provider_error(self) -> None:
        err = ProviderError("planetary_computer", "STAC down", retryable=True)
        assert err.provider == "planetary_computer"
        assert err.message == "STAC down"
        assert err.stage == "building_composite"
        assert err.context == {"provider": "planetary_computer"}
        assert str(err) == "[planetary_computer] STAC down"

    def test_provider_auth_error(self) -> None:
        err = ProviderAuthError("planetary_computer", "token refused")
        assert err.retryable is False
        assert err.code == "PROVIDER_AUTH_FAILED"

    def test_provider_search_and_read(self) -> None:
        assert ProviderSearchError("p", "x").code == "PROVIDER_SEARCH_FAILED"
        assert ProviderReadError("p", "x", retryable=True).code == "PROVIDER_READ_FAILED"


class TestRetrySemantics:
    """Retry decisions aligned to taxonomy classes."""

    def test_retryable_errors_report_transient_category(self) -> None:
        errors = [
            ResourceLimitError("x"),
            BackendUnavailableError("x"),
            ProviderError("p", "x", retryable=True),
            ProviderSearchError("p", "x", retryable=True),
        ]
        for err in errors:
            assert err.category == "transient", f"{type(err).__name__} should be transient"
            assert err.retryable is True

    def test_non_retryable_errors(self) -> None:
        errors = [
            NoImageryError("x"),
            NoValidHistogramError("x"),
            InvalidGeometryError("x"),
            AOIError("x"),
            ExportError("x"),
            ProviderAuthError("p", "x"),
        ]
        for err in errors:
            assert err.retryable is False, f"{type(err).__name__} should not retry"
