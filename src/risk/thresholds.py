"""Threshold ratios, breach flags and boundary status classification.

Expresses per-$1M pressure or simulated stock relative to each boundary's
safe limit and classifies it as safe, warning or breached.
"""

from __future__ import annotations

from enum import Enum
from typing import Sequence

import numpy as np
from loguru import logger
from numpy.typing import NDArray

WARNING_RATIO: float = 0.8
BREACH_RATIO: float = 1.0


class BoundaryStatus(str, Enum):
    """Traffic-light state of a boundary."""

    SAFE = "safe"
    WARNING = "warning"
    BREACHED = "breached"
    UNKNOWN = "unknown"


def threshold_ratios(
    values: Sequence[float] | NDArray[np.float64],
    thresholds: Sequence[float] | NDArray[np.float64],
) -> list[float | None]:
    """Divide each value by its threshold.

    Args:
        values: Pressure or stock per boundary.
        thresholds: Safe limit per boundary.

    Returns:
        One ratio per boundary, or ``None`` where the threshold is zero or
        non-finite.
    """
    ratios: list[float | None] = []
    for value, thr in zip(values, thresholds):
        if thr == 0.0 or not np.isfinite(thr):
            logger.warning("Threshold {} has no usable ratio", thr)
            ratios.append(None)
        else:
            ratios.append(float(value) / float(thr))
    return ratios


def classify_ratio(ratio: float | None) -> BoundaryStatus:
    """Map a threshold ratio to a :class:`BoundaryStatus`."""
    if ratio is None:
        return BoundaryStatus.UNKNOWN
    if ratio >= BREACH_RATIO:
        return BoundaryStatus.BREACHED
    if ratio >= WARNING_RATIO:
        return BoundaryStatus.WARNING
    return BoundaryStatus.SAFE


def breach_flags(
    stocks: Sequence[float] | NDArray[np.float64],
    thresholds: Sequence[float] | NDArray[np.float64],
) -> tuple[bool, ...]:
    """True where a stock strictly exceeds its threshold.

    A stock exactly at its threshold is not a breach.
    """
    return tuple(bool(s > t) for s, t in zip(stocks, thresholds))
