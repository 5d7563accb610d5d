"""Finite-difference sensitivity of boundary pressure to industry revenue.

For each industry *j* the revenue vector is bumped by an absolute
``delta`` (no renormalisation) and the coupled per-$1M pressure is
recomputed, giving a forward-difference estimate

    S[k][j] = (P_k(rev + delta * e_j) - P_k(rev)) / delta

of ``dP_k / dRevenue_j``.  The perturbed evaluation passes the unperturbed
revenue as the "previous" vector, so an enabled rebound effect reacts to
the single-industry bump.

Typical usage::

    analyzer = SensitivityAnalyzer(pressure_model)
    result = analyzer.compute(allocation=None, delta=0.1)
    result.to_frame()
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

import numpy as np
import polars as pl
from loguru import logger
from numpy.typing import NDArray

from src.models.coupling import apply_coupling
from src.models.pressure import PressureModel
from src.portfolio.allocation import allocation_to_revenue, even_allocation
from src.portfolio.definition import TOTAL_CAPITAL_M

SENSITIVITY_HEADER: str = "PB \\ Industry"


@dataclass(frozen=True)
class SensitivityResult:
    """Output of :meth:`SensitivityAnalyzer.compute`.

    Attributes:
        matrix: K x N array, ``matrix[k, j] = dP_k / dRevenue_j``.
        baseline: Coupled per-$1M pressure at the base allocation (K).
        baseline_revenue: Revenue vector of the base allocation (N).
        delta: Revenue bump used, in $1M.
        boundary_names: Row labels.
        industry_names: Column labels.
    """

    matrix: NDArray[np.float64]
    baseline: NDArray[np.float64]
    baseline_revenue: NDArray[np.float64]
    delta: float
    boundary_names: tuple[str, ...]
    industry_names: tuple[str, ...]

    def to_frame(self) -> pl.DataFrame:
        """One row per boundary, one Float64 column per industry."""
        data: dict[str, Any] = {SENSITIVITY_HEADER: list(self.boundary_names)}
        for j, name in enumerate(self.industry_names):
            data[name] = self.matrix[:, j].tolist()
        return pl.DataFrame(data)

    def write_csv(self, path: str | Path) -> Path:
        """Write the matrix as CSV with values in ``%.6e`` notation.

        Args:
            path: Destination file; parent directories are created.

        Returns:
            The written path.
        """
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        frame = self.to_frame().with_columns(
            [
                pl.col(name).map_elements(lambda v: f"{v:.6e}", return_dtype=pl.Utf8)
                for name in self.industry_names
            ]
        )
        frame.write_csv(out)
        logger.info("Sensitivity matrix written to {}", out)
        return out


class SensitivityAnalyzer:
    """Forward-difference Jacobian of coupled pressure w.r.t. revenue.

    Args:
        pressure_model: Model providing the portfolio, boundaries and
            switches (supply chain, rebound, mitigation).
        total_capital_m: Notional capital used to turn an allocation into
            revenue.
    """

    def __init__(
        self,
        pressure_model: PressureModel,
        total_capital_m: float = TOTAL_CAPITAL_M,
    ) -> None:
        self.pressure_model = pressure_model
        self.total_capital_m = total_capital_m

    def _coupled_per1m(
        self,
        revenue: NDArray[np.float64],
        previous_revenue: NDArray[np.float64] | None,
    ) -> NDArray[np.float64]:
        result = self.pressure_model.compute(revenue, previous_revenue)
        return apply_coupling(result.per1m, self.pressure_model.boundaries)

    def compute(
        self,
        allocation: Sequence[Any] | None = None,
        delta: float = 0.1,
        previous_revenue: Sequence[float] | NDArray[np.float64] | None = None,
    ) -> SensitivityResult:
        """Estimate the K x N sensitivity matrix.

        Args:
            allocation: Raw base allocation (N); None means an even split.
            delta: Absolute revenue bump in $1M; must be positive.
            previous_revenue: Optional prior revenue for the baseline
                evaluation's rebound term.

        Returns:
            A :class:`SensitivityResult`.

        Raises:
            ValueError: If ``delta <= 0``.
            InvalidDimensionError: If *allocation* is not length N.
        """
        if delta <= 0.0:
            raise ValueError(f"Perturbation delta must be positive, got {delta}")

        portfolio = self.pressure_model.portfolio
        raw = even_allocation(portfolio.size) if allocation is None else allocation
        base_revenue = allocation_to_revenue(raw, self.total_capital_m)
        prev = None if previous_revenue is None else np.asarray(previous_revenue, dtype=np.float64)
        baseline = self._coupled_per1m(base_revenue, prev)

        n = portfolio.size
        k = self.pressure_model.boundaries.size
        matrix = np.zeros((k, n), dtype=np.float64)
        for j in range(n):
            bumped = base_revenue.copy()
            bumped[j] += delta
            perturbed = self._coupled_per1m(bumped, base_revenue)
            matrix[:, j] = (perturbed - baseline) / delta

        logger.info(
            "Sensitivity matrix {}x{} computed (delta={}, max |S|={:.4g})",
            k,
            n,
            delta,
            float(np.abs(matrix).max()) if matrix.size else 0.0,
        )
        return SensitivityResult(
            matrix=matrix,
            baseline=baseline,
            baseline_revenue=base_revenue,
            delta=delta,
            boundary_names=self.pressure_model.boundaries.names,
            industry_names=portfolio.industries,
        )
