"""Portfolio-to-pressure mapping for the nine planetary boundaries.

Converts a revenue-by-industry vector into absolute and per-$1M pressure on
each boundary:

    1. Intensity rows scaled by supply-chain multipliers (optional).
    2. Rows further scaled by ``1 + elasticity_i * s_i`` where ``s_i`` is the
       relative revenue change against a previous revenue vector (optional
       rebound).
    3. Absolute pressure = revenue-weighted column sums.
    4. Mitigation discount ``(1 - m_k)`` per boundary.
    5. Per-$1M pressure = mitigated totals / total revenue.

Typical usage::

    model = PressureModel(ModelConfig(supply_chain=True))
    result = model.compute(revenue, previous_revenue=None)
    result.per1m
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np
from loguru import logger
from numpy.typing import NDArray

from src.models.base_model import EPS, BaseModel


@dataclass(frozen=True)
class PressureResult:
    """Output of a single pressure evaluation.

    Attributes:
        totals: Absolute pressure per boundary after mitigation (K).
        per1m: ``totals`` divided by total revenue (K).
        total_revenue: Sum of the revenue vector, in $1M.
        adjusted_matrix: The N x K intensity matrix after supply-chain and
            rebound scaling.  Read-only; the return model reuses it for
            exposure profiles instead of recomputing it.
    """

    totals: NDArray[np.float64]
    per1m: NDArray[np.float64]
    total_revenue: float
    adjusted_matrix: NDArray[np.float64]


class PressureModel(BaseModel):
    """Maps a revenue vector to planetary-boundary pressure."""

    def get_params(self) -> dict[str, Any]:
        return {
            "supply_chain": self.config.supply_chain,
            "rebound": self.config.rebound,
            "mitigation": list(self.config.mitigation),
            "supply_chain_mult": list(self.portfolio.supply_chain_mult),
            "rebound_elasticity": list(self.portfolio.rebound_elasticity),
        }

    def revenue_change(
        self,
        revenue: NDArray[np.float64],
        previous_revenue: NDArray[np.float64] | None,
    ) -> NDArray[np.float64]:
        """Relative revenue change per industry, zero when rebound is off.

        Args:
            revenue: Current revenue (N).
            previous_revenue: Revenue from the prior evaluation, or None.

        Returns:
            ``(rev - prev) / max(prev, eps)`` per industry.
        """
        if not self.config.rebound or previous_revenue is None:
            return np.zeros_like(revenue)
        prev = np.maximum(previous_revenue, EPS)
        return (revenue - prev) / prev

    def compute(
        self,
        revenue: Sequence[float] | NDArray[np.float64],
        previous_revenue: Sequence[float] | NDArray[np.float64] | None = None,
    ) -> PressureResult:
        """Compute mitigated absolute and per-$1M pressure.

        Args:
            revenue: Revenue per industry in $1M (length N).
            previous_revenue: Optional prior revenue for the rebound effect.

        Returns:
            A :class:`PressureResult`.

        Raises:
            InvalidDimensionError: If either revenue vector is not length N.
        """
        rev = self._industry_vector(revenue, "revenue")
        prev = (
            None
            if previous_revenue is None
            else self._industry_vector(previous_revenue, "previous_revenue")
        )

        shift = self.revenue_change(rev, prev)
        factor = 1.0 + self.portfolio.rebound_vector * shift
        adjusted = self.adjusted_intensity() * factor[:, np.newaxis]
        adjusted.setflags(write=False)

        totals = rev @ adjusted
        mitigated = totals * (1.0 - self.config.mitigation_vector)

        total_revenue = float(rev.sum())
        per1m = mitigated / (total_revenue or EPS)

        logger.debug(
            "Pressure computed: total revenue={:.3f}M, rebound active={}",
            total_revenue,
            prev is not None and self.config.rebound,
        )
        return PressureResult(
            totals=mitigated,
            per1m=per1m,
            total_revenue=total_revenue,
            adjusted_matrix=adjusted,
        )
