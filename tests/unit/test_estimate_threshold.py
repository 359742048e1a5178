"""Tests for Otsu threshold estimation.

Covers:
- Result always lies within the bucket-mean range
- Bimodal histograms split between the modes
- First maximising split wins on ties
- Degenerate histograms raise InsufficientDataError
"""

from __future__ import annotations

import numpy as np
import pytest

from shoreline_satellite.activities.estimate_threshold import estimate_threshold
from shoreline_satellite.backends.local import bucket_histogram
from shoreline_satellite.core.exceptions import InsufficientDataError, PermanentError
from shoreline_satellite.models.raster import Histogram


class TestThresholdBounds:
    """The threshold is one of the bucket means."""

    def test_within_mean_range(self) -> None:
        rng = np.random.default_rng(42)
        values = rng.normal(0.0, 1.0, 5_000)
        histogram = bucket_histogram(values)
        threshold = estimate_threshold(histogram)
        assert min(histogram.means) <= threshold <= max(histogram.means)

    def test_is_a_bucket_mean(self) -> None:
        histogram = Histogram(means=(1.0, 2.0, 3.0, 4.0), counts=(5, 1, 1, 5))
        assert estimate_threshold(histogram) in histogram.means

    def test_two_buckets(self) -> None:
        histogram = Histogram(means=(-1.0, 1.0), counts=(10, 10))
        assert estimate_threshold(histogram) == 1.0


class TestBimodal:
    """Well separated modes are split between them."""

    def test_splits_two_gaussians(self) -> None:
        rng = np.random.default_rng(7)
        low = rng.normal(-0.5, 0.05, 2_000)
        high = rng.normal(0.5, 0.05, 2_000)
        threshold = estimate_threshold(bucket_histogram(np.concatenate([low, high])))
        assert low.max() < threshold <= high.min() + 0.05

    def test_unbalanced_modes(self) -> None:
        rng = np.random.default_rng(3)
        water = rng.normal(-20.0, 0.5, 500)
        land = rng.normal(-8.0, 0.5, 9_500)
        threshold = estimate_threshold(bucket_histogram(np.concatenate([water, land])))
        assert water.max() < threshold < land.min()

    def test_first_maximum_wins(self) -> None:
        # Every split between the two occupied buckets scores the same.
        histogram = Histogram(means=(0.0, 1.0, 2.0, 3.0), counts=(4, 0, 0, 4))
        assert estimate_threshold(histogram) == 1.0


class TestZeroCountGroups:
    """Empty groups contribute zero variance, never NaN."""

    def test_leading_empty_buckets(self) -> None:
        histogram = Histogram(means=(0.0, 1.0, 2.0, 3.0), counts=(0, 0, 6, 6))
        threshold = estimate_threshold(histogram)
        assert np.isfinite(threshold)
        assert threshold == 3.0


class TestInsufficientData:
    """Degenerate histograms are rejected."""

    def test_empty_histogram(self) -> None:
        with pytest.raises(InsufficientDataError):
            estimate_threshold(Histogram())

    def test_single_bucket(self) -> None:
        with pytest.raises(InsufficientDataError) as exc_info:
            estimate_threshold(Histogram(means=(0.5,), counts=(100,)))
        assert exc_info.value.context["buckets"] == 1

    def test_zero_total_count(self) -> None:
        with pytest.raises(InsufficientDataError):
            estimate_threshold(Histogram(means=(0.0, 1.0), counts=(0, 0)))

    def test_is_permanent(self) -> None:
        with pytest.raises(PermanentError) as exc_info:
            estimate_threshold(Histogram())
        assert exc_info.value.retryable is False
        assert exc_info.value.code == "INSUFFICIENT_DATA"


class TestBucketHistogram:
    """Histogram bucketing used by the local backend."""

    def test_at_most_256_buckets(self) -> None:
        histogram = bucket_histogram(np.linspace(-1.0, 1.0, 10_000))
        assert len(histogram) == 256
        assert histogram.total == 10_000

    def test_min_bucket_width(self) -> None:
        histogram = bucket_histogram(np.array([0.0, 0.0005, 0.001, 0.002]))
        assert len(histogram) == 3

    def test_ignores_nan(self) -> None:
        histogram = bucket_histogram(np.array([np.nan, 1.0, 2.0, np.inf]))
        assert histogram.total == 2

    def test_all_nan_is_empty(self) -> None:
        assert len(bucket_histogram(np.full(10, np.nan))) == 0

    def test_means_ordered(self) -> None:
        rng = np.random.default_rng(0)
        histogram = bucket_histogram(rng.uniform(-5, 5, 1_000))
        assert list(histogram.means) == sorted(histogram.means)
