"""Cross-boundary coupling of per-$1M pressure.

Pressure on one boundary amplifies pressure on others (e.g. nutrient
loading worsens biodiversity loss).  Each boundary's pressure is first
expressed as a fraction of its threshold; boundary *k* then receives

    sum_{j != k} coupling[j][k] * ratio[j] * threshold[k]

on top of its own value.  The propagation is a single hop: effects do not
cascade transitively within one call.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
from numpy.typing import NDArray

from src.portfolio.definition import BoundarySet, InvalidDimensionError


def apply_coupling(
    per1m: Sequence[float] | NDArray[np.float64],
    boundaries: BoundarySet | None = None,
) -> NDArray[np.float64]:
    """Add one-hop cross-boundary feedback to a per-$1M pressure vector.

    Args:
        per1m: Per-$1M pressure, one value per boundary.
        boundaries: Thresholds and coupling matrix; defaults to the standard
            planetary-boundary set.

    Returns:
        New K-length array.  Equal to *per1m* when the coupling matrix is
        all zeros.

    Raises:
        InvalidDimensionError: If *per1m* is not K long.
    """
    boundaries = boundaries or BoundarySet()
    base = np.asarray(per1m, dtype=np.float64)
    if base.shape != (boundaries.size,):
        raise InvalidDimensionError(
            f"Pressure vector has shape {base.shape}; expected ({boundaries.size},)"
        )

    thresholds = boundaries.threshold_vector
    coupling = boundaries.coupling_matrix.copy()
    np.fill_diagonal(coupling, 0.0)

    ratio = base / thresholds
    extra_ratio = ratio @ coupling
    return base + extra_ratio * thresholds
