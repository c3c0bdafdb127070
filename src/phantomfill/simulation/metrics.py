"""Distribution statistics for Monte Carlo runs.

Percentiles use the nearest-rank method on a sorted copy of the values:
the p-th percentile of n values is the value at rank ``ceil(p / 100 * n)``
(1-based, clamped to at least 1). The result is always one of the observed
values, so ``min <= percentile <= max`` holds for every p.
"""

import math
from typing import Dict, Iterable, Sequence

import numpy as np

DEFAULT_PERCENTILES: tuple[float, ...] = (5.0, 50.0, 95.0)


def percentile(values: Sequence[float], pct: float) -> float:
    """Nearest-rank percentile of ``values``.

    Args:
        values: Observations in any order (not modified)
        pct: Percentile in [0, 100]

    Returns:
        The observed value at the nearest rank.

    Raises:
        ValueError: If ``values`` is empty or ``pct`` is out of range.
    """
    if len(values) == 0:
        raise ValueError("percentile of an empty sequence")
    if not 0.0 <= pct <= 100.0:
        raise ValueError(f"percentile must be in [0, 100], got {pct}")

    ordered = np.sort(np.asarray(values, dtype=float))
    rank = math.ceil(pct / 100.0 * len(ordered))
    return float(ordered[max(rank, 1) - 1])


def summarize_distribution(
    values: Sequence[float],
    percentiles: Iterable[float] = DEFAULT_PERCENTILES,
) -> Dict[str, float]:
    """
    Summary statistics for a set of per-run values.

    Args:
        values: One value per run
        percentiles: Percentiles to report

    Returns:
        Dict with mean, median, std (population), min, max and one
        ``p{N}`` entry per requested percentile (e.g. ``p5``, ``p95``).
    """
    if len(values) == 0:
        raise ValueError("cannot summarize an empty distribution")

    arr = np.asarray(values, dtype=float)
    summary = {
        "mean": float(np.mean(arr)),
        "median": percentile(arr, 50.0),
        "std": float(np.std(arr)),
        "min": float(np.min(arr)),
        "max": float(np.max(arr)),
    }
    for pct in percentiles:
        summary[percentile_key(pct)] = percentile(arr, pct)
    return summary


def percentile_key(pct: float) -> str:
    """Dictionary key for a percentile, e.g. 5.0 -> 'p5', 97.5 -> 'p97.5'."""
    return f"p{pct:g}"
