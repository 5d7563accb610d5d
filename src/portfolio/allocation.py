"""Allocation normalisation and revenue derivation.

An allocation is any vector of relative capital preferences (slider
positions, imported rows, scenario stamps).  The engine only ever works on
its normalised form, scaled by the total notional capital.
"""

from __future__ import annotations

from typing import Any, Sequence

import numpy as np
from numpy.typing import NDArray

from src.portfolio.definition import TOTAL_CAPITAL_M


def _coerce(value: Any) -> float:
    """Convert *value* to a non-negative finite float, or 0.0."""
    try:
        x = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not np.isfinite(x) or x < 0.0:
        return 0.0
    return x


def normalize_allocation(raw: Sequence[Any]) -> NDArray[np.float64]:
    """Turn a raw weight vector into a distribution that sums to one.

    Negative, non-numeric and non-finite entries count as zero.  When
    nothing positive remains the result is uniform (``1/N`` each).

    Args:
        raw: Weights of length N, in any numeric or numeric-like form.

    Returns:
        Float64 array of length N, entries >= 0, summing to 1 (empty when
        *raw* is empty).
    """
    clipped = np.array([_coerce(x) for x in raw], dtype=np.float64)
    n = clipped.size
    if n == 0:
        return clipped
    peak = clipped.max()
    if peak <= 0.0:
        return np.full(n, 1.0 / n, dtype=np.float64)
    # Scale by the largest weight first so the sum cannot overflow.
    scaled = clipped / peak
    return scaled / scaled.sum()


def allocation_to_revenue(
    raw: Sequence[Any],
    total_capital_m: float = TOTAL_CAPITAL_M,
) -> NDArray[np.float64]:
    """Normalise *raw* and scale it to revenue in $1M units."""
    return normalize_allocation(raw) * total_capital_m


def even_allocation(n: int) -> list[float]:
    """Even split over *n* industries, as used when no allocation is given."""
    return [100.0 / n] * n
