"""Portfolio return model with optional planetary-boundary feedback.

Without feedback the portfolio ROI is the revenue-weighted average of each
industry's baseline return.  With feedback, industries are penalised in
proportion to how exposed they are to boundaries whose stocks overshoot
their thresholds:

    exposure[i, k] = adjusted_intensity[i, k] / sum_k adjusted_intensity[i, k]
    overshoot[k]   = max(0, stock[k] / threshold[k] - 1)
    penalty[i]     = sum_k exposure[i, k] * overshoot[k]
    r_eff[i]       = r0[i] * max(0, 1 - eta * penalty[i])

Typical usage::

    model = ReturnModel(ModelConfig(roi_feedback=True, eta=0.5))
    roi = model.compute_roi(revenue, stocks=session.stocks)
"""

from __future__ import annotations

from typing import Any, Sequence

import numpy as np
from loguru import logger
from numpy.typing import NDArray

from src.models.base_model import EPS, BaseModel


class ReturnModel(BaseModel):
    """Revenue-weighted portfolio ROI, in percent."""

    def get_params(self) -> dict[str, Any]:
        return {
            "roi_feedback": self.config.roi_feedback,
            "eta": self.config.eta,
            "baseline_returns": list(self.portfolio.baseline_returns),
        }

    def exposure_profile(
        self, adjusted_matrix: NDArray[np.float64] | None = None
    ) -> NDArray[np.float64]:
        """Each industry's intensity row divided by its row sum.

        Args:
            adjusted_matrix: Intensity matrix to normalise, typically
                :attr:`PressureResult.adjusted_matrix`.  Defaults to this
                model's supply-chain adjusted intensity.

        Returns:
            N x K array.  Rows summing to zero are divided by ``eps``.
        """
        matrix = self.adjusted_intensity() if adjusted_matrix is None else adjusted_matrix
        row_sums = matrix.sum(axis=1)
        row_sums = np.where(row_sums == 0.0, EPS, row_sums)
        return matrix / row_sums[:, np.newaxis]

    def overshoot(self, stocks: Sequence[float] | NDArray[np.float64]) -> NDArray[np.float64]:
        """Fractional excess of each boundary stock over its threshold."""
        arr = self._boundary_vector(stocks, "stocks")
        return np.maximum(0.0, arr / self.boundaries.threshold_vector - 1.0)

    def effective_returns(
        self,
        stocks: Sequence[float] | NDArray[np.float64],
        adjusted_matrix: NDArray[np.float64] | None = None,
    ) -> NDArray[np.float64]:
        """Baseline returns after the boundary-overshoot penalty.

        Args:
            stocks: Current boundary stock state (K).
            adjusted_matrix: Optional shared intensity matrix.

        Returns:
            N-length array of penalised returns (never below zero for a
            non-negative baseline).
        """
        penalty = self.exposure_profile(adjusted_matrix) @ self.overshoot(stocks)
        scale = np.maximum(0.0, 1.0 - self.config.eta * penalty)
        return self.portfolio.returns_vector * scale

    def compute_roi(
        self,
        revenue: Sequence[float] | NDArray[np.float64],
        stocks: Sequence[float] | NDArray[np.float64] | None = None,
        adjusted_matrix: NDArray[np.float64] | None = None,
    ) -> float:
        """Portfolio ROI as the revenue-weighted average return.

        Feedback applies only when ``config.roi_feedback`` is set and
        *stocks* is given.

        Args:
            revenue: Revenue per industry (N).
            stocks: Optional boundary stock state (K).
            adjusted_matrix: Optional intensity matrix shared from a
                :class:`~src.models.pressure.PressureResult`.

        Returns:
            ROI in percent.

        Raises:
            InvalidDimensionError: On an N or K length mismatch.
        """
        rev = self._industry_vector(revenue, "revenue")
        total = float(rev.sum()) or EPS
        weights = rev / total

        if self.config.roi_feedback and stocks is not None:
            returns = self.effective_returns(stocks, adjusted_matrix)
        else:
            returns = self.portfolio.returns_vector

        roi = float(weights @ returns)
        logger.debug(
            "ROI {:.4f}% (feedback={}, eta={})",
            roi,
            self.config.roi_feedback and stocks is not None,
            self.config.eta,
        )
        return roi
