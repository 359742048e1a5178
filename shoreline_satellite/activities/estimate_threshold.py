"""Histogram threshold estimation (Otsu's method).

Given a value histogram (bucket means + counts), picks the split that
maximises the between-class variance and returns the bucket mean at that
split.  Pure function, no I/O, no backend.

For a split index ``i`` in ``1..n-1`` the *below* group is buckets
``[0, i)`` and the *above* group is ``[i, n)``:

    BCV(i) = count_below * (mean_below - mu)^2 + count_above * (mean_above - mu)^2

where ``mu`` is the count-weighted mean of all buckets.  The first index
that attains the maximum wins, so the result is deterministic for ties.
"""

from __future__ import annotations

import logging

import numpy as np

from shoreline_satellite.core.exceptions import InsufficientDataError
from shoreline_satellite.models.raster import Histogram

logger = logging.getLogger("shoreline_satellite.activities.estimate_threshold")

MIN_BUCKETS = 2


def estimate_threshold(histogram: Histogram) -> float:
    """Return the Otsu threshold of *histogram*.

    Args:
        histogram: Bucket means and counts, ordered by value.

    Returns:
        A value in ``[min(means), max(means)]``.

    Raises:
        InsufficientDataError: If the histogram has fewer than two buckets
            or its total count is zero.
    """
    n = len(histogram)
    if n < MIN_BUCKETS:
        msg = f"Histogram has {n} bucket(s), need at least {MIN_BUCKETS}"
        raise InsufficientDataError(msg, context={"buckets": n})

    means = np.asarray(histogram.means, dtype=np.float64)
    counts = np.asarray(histogram.counts, dtype=np.float64)
    total = counts.sum()
    if total <= 0:
        msg = "Histogram total count is zero"
        raise InsufficientDataError(msg, context={"buckets": n})

    mu = float((means * counts).sum() / total)

    # Prefix sums give both groups for every split in one pass.
    count_below = np.cumsum(counts)[:-1]
    sum_below = np.cumsum(means * counts)[:-1]
    count_above = total - count_below
    sum_above = (means * counts).sum() - sum_below

    with np.errstate(invalid="ignore", divide="ignore"):
        mean_below = np.where(count_below > 0, sum_below / count_below, mu)
        mean_above = np.where(count_above > 0, sum_above / count_above, mu)

    bcv = count_below * (mean_below - mu) ** 2 + count_above * (mean_above - mu) ** 2
    # bcv[k] corresponds to split index k + 1; argmax returns the first maximum.
    split = int(np.argmax(bcv)) + 1
    threshold = float(means[split])

    logger.debug(
        "Otsu threshold | buckets=%d | total=%.0f | split=%d | threshold=%.6f",
        n,
        total,
        split,
        threshold,
    )
    return threshold
