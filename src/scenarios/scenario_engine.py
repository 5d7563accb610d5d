"""Scenario engine for the PB portfolio simulator.

Orchestrates the pressure, coupling and return models together with the
boundary-stock integrator.  Loads model and scenario parameters from YAML
configuration, evaluates single allocations, drives the integrator across a
per-period allocation timeline, and produces aggregate statistics for
downstream reporting.

Typical usage::

    engine = ScenarioEngine()
    engine.load_config("config/simulation.yaml")
    session = SimulationSession(engine.boundaries)
    results = engine.run_scenario(session, timeline, periods=8)
    stats = engine.summary_statistics(results)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

import numpy as np
import polars as pl
import yaml
from loguru import logger
from numpy.typing import NDArray
from pydantic import BaseModel as PydanticBaseModel, Field, ValidationError, field_validator

from src.dynamics.integrators import integrate_step
from src.dynamics.registry import SchemeRegistry
from src.models.base_model import ModelConfig
from src.models.coupling import apply_coupling
from src.models.pressure import PressureModel, PressureResult
from src.models.returns import ReturnModel
from src.portfolio.allocation import allocation_to_revenue, even_allocation
from src.portfolio.definition import (
    TOTAL_CAPITAL_M,
    BoundarySet,
    PortfolioDefinition,
    raise_dimension_error,
)
from src.risk.sensitivity import SensitivityAnalyzer, SensitivityResult
from src.risk.thresholds import (
    BoundaryStatus,
    breach_flags,
    classify_ratio,
    threshold_ratios,
)
from src.scenarios.session import ScenarioTimeline, SimulationSession


class ScenarioConfig(PydanticBaseModel):
    """Integration and driver settings.

    Attributes:
        dt: Integrator step per simulated period.
        regen: Fraction of each threshold regenerated per unit time.
        scheme: Integrator scheme name.
        periods: Default number of periods per run.
        total_capital_m: Notional capital in $1M.
        sensitivity_delta: Revenue bump ($1M) for finite differences.
    """

    dt: float = Field(default=0.25, gt=0.0)
    regen: float = Field(default=0.05, ge=0.0)
    scheme: str = "rk4"
    periods: int = Field(default=8, ge=1)
    total_capital_m: float = Field(default=TOTAL_CAPITAL_M, gt=0.0)
    sensitivity_delta: float = Field(default=0.1, gt=0.0)

    model_config = {"frozen": False}

    @field_validator("scheme")
    @classmethod
    def _check_scheme(cls, v: str) -> str:
        available = SchemeRegistry().list_schemes()
        if v.lower() not in available:
            raise ValueError(f"Unknown integrator scheme '{v}'; available: {available}")
        return v.lower()


class SimulationConfig(PydanticBaseModel):
    """Top-level YAML schema: ``model`` and ``scenario`` sections."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    scenario: ScenarioConfig = Field(default_factory=ScenarioConfig)


def load_simulation_config(config_path: str | Path) -> SimulationConfig:
    """Load and validate a simulation YAML file.

    Args:
        config_path: Path to the YAML file.

    Returns:
        Validated :class:`SimulationConfig`.

    Raises:
        FileNotFoundError: If the file does not exist.
        pydantic.ValidationError: On out-of-range values.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Simulation config not found: {path}")

    with open(path, "r", encoding="utf-8") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    config = SimulationConfig(
        model=raw.get("model") or {},
        scenario=raw.get("scenario") or {},
    )
    logger.info("Loaded simulation config from {}", path)
    return config


@dataclass(frozen=True)
class HistoryEntry:
    """Boundary state at the end of one simulated period.

    Attributes:
        period: 1-based period number within the run.
        time: Cumulative session time after the step.
        stocks: Stock per boundary.
        breaches: ``stock_k > threshold_k`` per boundary.
    """

    period: int
    time: float
    stocks: tuple[float, ...]
    breaches: tuple[bool, ...]

    @property
    def breach_count(self) -> int:
        return sum(self.breaches)


@dataclass
class ScenarioResults:
    """Output of one :meth:`ScenarioEngine.run_scenario` call.

    Attributes:
        history: One entry per simulated period, in order.
        scheme: Integrator scheme used.
        dt: Step size.
        regen: Regeneration fraction.
        initial_stocks: Session stocks before the run.
        fluxes: Precomputed absolute flux vector per timeline period.
        metadata: Additional metadata.
    """

    history: list[HistoryEntry]
    scheme: str
    dt: float
    regen: float
    initial_stocks: tuple[float, ...]
    fluxes: list[tuple[float, ...]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def n_periods(self) -> int:
        return len(self.history)

    @property
    def final_stocks(self) -> tuple[float, ...]:
        if not self.history:
            return self.initial_stocks
        return self.history[-1].stocks


@dataclass
class AllocationReport:
    """Instantaneous view of one allocation.

    Attributes:
        allocation: Normalised weights (sum to one).
        revenue: Revenue per industry in $1M.
        pressure: Raw pressure-model output.
        coupled_per1m: Per-$1M pressure after cross-boundary coupling.
        ratios: ``coupled_per1m / threshold`` (None where undefined).
        statuses: Classification of each ratio.
        roi: Portfolio ROI in percent.
    """

    allocation: NDArray[np.float64]
    revenue: NDArray[np.float64]
    pressure: PressureResult
    coupled_per1m: NDArray[np.float64]
    ratios: list[float | None]
    statuses: list[BoundaryStatus]
    roi: float


class ScenarioEngine:
    """Portfolio evaluation and multi-period boundary simulation.

    Holds the reference data (portfolio definition and boundary set) and the
    model switches.  Definitions are swapped wholesale via
    :meth:`replace_portfolio`; the pressure and return models are rebuilt
    on every swap so that no computation reads a half-updated definition.

    Args:
        config_path: Optional path to a simulation YAML; can also be set via
            :meth:`load_config`.
        portfolio: Industry definition; defaults to the seven built-in
            sectors.
        boundaries: Boundary set; defaults to the nine planetary boundaries.
        model_config: Model switches; defaults to all features off.
        scenario_config: Integration settings.

    Example::

        engine = ScenarioEngine()
        session = SimulationSession(engine.boundaries)
        report = engine.evaluate_allocation([15, 25, 15, 10, 20, 5, 10], session)
        results = engine.run_scenario(session, periods=24)
    """

    def __init__(
        self,
        config_path: str | Path | None = None,
        portfolio: PortfolioDefinition | None = None,
        boundaries: BoundarySet | None = None,
        model_config: ModelConfig | None = None,
        scenario_config: ScenarioConfig | None = None,
    ) -> None:
        self.portfolio = portfolio or PortfolioDefinition()
        self.boundaries = boundaries or BoundarySet()
        self.model_config = model_config or ModelConfig()
        self.scenario_config = scenario_config or ScenarioConfig()

        self._pressure_model: PressureModel | None = None
        self._return_model: ReturnModel | None = None
        self._init_sub_models()

        if config_path is not None:
            self.load_config(config_path)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def load_config(self, config_path: str | Path) -> None:
        """Load model and scenario settings from a YAML file.

        Args:
            config_path: Path to the simulation YAML file.

        Raises:
            FileNotFoundError: If the config file does not exist.
        """
        config = load_simulation_config(config_path)
        self.model_config = config.model
        self.scenario_config = config.scenario
        self._init_sub_models()

    def _init_sub_models(self) -> None:
        """(Re)build the pressure and return models from current state."""
        self._pressure_model = PressureModel(
            self.model_config, self.portfolio, self.boundaries
        )
        self._return_model = ReturnModel(
            self.model_config, self.portfolio, self.boundaries
        )

    def replace_portfolio(self, portfolio: PortfolioDefinition) -> None:
        """Atomically swap in a new portfolio definition."""
        self.portfolio = portfolio
        self._init_sub_models()
        logger.info(
            "Portfolio swapped: {} industries ({})",
            portfolio.size,
            ", ".join(portfolio.industries),
        )

    def _rebuild_model_config(self, data: dict[str, Any]) -> None:
        try:
            config = ModelConfig(**data)
        except ValidationError as exc:
            raise_dimension_error(exc)
            raise
        self.model_config = config
        self._init_sub_models()

    def set_mitigation(self, mitigation: Sequence[float]) -> None:
        """Replace the per-boundary mitigation vector (clamped to [0, 1]).

        Raises:
            InvalidDimensionError: If *mitigation* is not K long; the
                current configuration is kept.
        """
        data = self.model_config.model_dump()
        data["mitigation"] = [float(m) for m in mitigation]
        self._rebuild_model_config(data)

    def configure(self, **switches: Any) -> None:
        """Update model switches (``supply_chain``, ``rebound``, ...)."""
        data = self.model_config.model_dump()
        data.update(switches)
        self._rebuild_model_config(data)

    @property
    def pressure_model(self) -> PressureModel:
        assert self._pressure_model is not None
        return self._pressure_model

    @property
    def return_model(self) -> ReturnModel:
        assert self._return_model is not None
        return self._return_model

    # ------------------------------------------------------------------
    # Single-allocation evaluation
    # ------------------------------------------------------------------

    def evaluate_allocation(
        self,
        raw_allocation: Sequence[Any] | None,
        session: SimulationSession | None = None,
    ) -> AllocationReport:
        """Compute coupled pressure, threshold status and ROI for one allocation.

        Rebound compares against ``session.last_revenue`` (the previous
        evaluation), and ROI feedback reads the session's current stocks.
        The evaluated revenue becomes the session's new ``last_revenue``.

        Args:
            raw_allocation: Raw weights (N); None means an even split.
            session: Optional session providing stocks and prior revenue.

        Returns:
            An :class:`AllocationReport`.
        """
        raw = even_allocation(self.portfolio.size) if raw_allocation is None else raw_allocation
        revenue = allocation_to_revenue(raw, self.scenario_config.total_capital_m)
        previous = session.last_revenue if session is not None else None

        pressure = self.pressure_model.compute(revenue, previous)
        coupled = apply_coupling(pressure.per1m, self.boundaries)
        ratios = threshold_ratios(coupled, self.boundaries.thresholds)
        roi = self.return_model.compute_roi(
            revenue,
            session.stocks if session is not None else None,
            adjusted_matrix=pressure.adjusted_matrix,
        )

        if session is not None:
            session.last_revenue = revenue.copy()

        return AllocationReport(
            allocation=revenue / self.scenario_config.total_capital_m,
            revenue=revenue,
            pressure=pressure,
            coupled_per1m=coupled,
            ratios=ratios,
            statuses=[classify_ratio(r) for r in ratios],
            roi=roi,
        )

    def compute_sensitivity(
        self,
        allocation: Sequence[Any] | None = None,
        delta: float | None = None,
        session: SimulationSession | None = None,
    ) -> SensitivityResult:
        """Pressure-to-revenue sensitivity at *allocation*.

        The baseline evaluation uses ``session.last_revenue`` as its
        previous revenue, as :meth:`evaluate_allocation` does.  The session
        is read only.
        """
        analyzer = SensitivityAnalyzer(
            self.pressure_model, self.scenario_config.total_capital_m
        )
        return analyzer.compute(
            allocation,
            self.scenario_config.sensitivity_delta if delta is None else delta,
            previous_revenue=session.last_revenue if session is not None else None,
        )

    # ------------------------------------------------------------------
    # Scenario driver
    # ------------------------------------------------------------------

    def precompute_fluxes(
        self, timeline: ScenarioTimeline | Sequence[Sequence[Any]] | None
    ) -> list[NDArray[np.float64]]:
        """Absolute mitigated pressure per scheduled period.

        An empty timeline becomes a single even-split period.  Rebound is
        never applied here: each period is evaluated without a previous
        revenue vector.
        """
        periods = list(timeline) if timeline is not None else []
        if not periods:
            periods = [even_allocation(self.portfolio.size)]

        fluxes: list[NDArray[np.float64]] = []
        for raw in periods:
            revenue = allocation_to_revenue(raw, self.scenario_config.total_capital_m)
            fluxes.append(self.pressure_model.compute(revenue, None).totals)
        return fluxes

    def run_scenario(
        self,
        session: SimulationSession,
        timeline: ScenarioTimeline | Sequence[Sequence[Any]] | None = None,
        periods: int | None = None,
        dt: float | None = None,
        regen: float | None = None,
        scheme: str | None = None,
    ) -> ScenarioResults:
        """Advance the session's stocks one integrator step per period.

        Period ``q`` uses the flux of timeline entry ``q mod len(timeline)``,
        constant within the step.  Each step is committed to *session*, so a
        later call continues from where this one stopped.

        Args:
            session: Session whose stocks are advanced.
            timeline: Per-period raw allocations; empty or None means one
                even-split period repeated.
            periods: Number of periods to simulate (may exceed the timeline
                length); defaults to ``scenario_config.periods``.
            dt: Step size override.
            regen: Regeneration fraction override.
            scheme: Integrator scheme override (``"euler"`` / ``"rk4"``).

        Returns:
            ScenarioResults with one history entry per period.

        Raises:
            ValueError: If ``periods < 0``, ``dt <= 0`` or ``regen < 0``.
            KeyError: If *scheme* is not registered.
            InvalidDimensionError: If a timeline allocation is not length N.
        """
        cfg = self.scenario_config
        n_periods = cfg.periods if periods is None else periods
        step_dt = cfg.dt if dt is None else dt
        step_regen = cfg.regen if regen is None else regen
        step_scheme = (cfg.scheme if scheme is None else scheme).lower()

        if n_periods < 0:
            raise ValueError(f"periods must be >= 0, got {n_periods}")
        if step_dt <= 0.0:
            raise ValueError(f"Step size dt must be positive, got {step_dt}")
        if step_regen < 0.0:
            raise ValueError(f"Regeneration fraction must be >= 0, got {step_regen}")
        SchemeRegistry().get(step_scheme)

        fluxes = self.precompute_fluxes(timeline)
        thresholds = self.boundaries.threshold_vector
        initial = tuple(float(b) for b in session.stocks)

        history: list[HistoryEntry] = []
        for q in range(n_periods):
            period_flux = fluxes[q % len(fluxes)]

            def flux(
                t: float,
                stock: NDArray[np.float64],
                _f: NDArray[np.float64] = period_flux,
            ) -> NDArray[np.float64]:
                return _f.copy()

            new_stocks = integrate_step(
                step_scheme,
                session.stocks,
                session.time,
                step_dt,
                flux,
                step_regen,
                thresholds,
            )
            session.commit(new_stocks, step_dt)
            entry = HistoryEntry(
                period=q + 1,
                time=session.time,
                stocks=tuple(float(b) for b in new_stocks),
                breaches=breach_flags(new_stocks, thresholds),
            )
            history.append(entry)
            logger.debug("Q{}: breaches={}", entry.period, entry.breach_count)

        session.runs += 1
        results = ScenarioResults(
            history=history,
            scheme=step_scheme,
            dt=step_dt,
            regen=step_regen,
            initial_stocks=initial,
            fluxes=[tuple(float(v) for v in f) for f in fluxes],
            metadata={
                "timeline_length": len(fluxes),
                "run": session.runs,
            },
        )

        logger.info(
            "Simulated {} periods with {} (dt={}, regen={}); final breaches={}",
            n_periods,
            step_scheme,
            step_dt,
            step_regen,
            history[-1].breach_count if history else 0,
        )
        return results

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def aggregate_results(self, results: ScenarioResults) -> pl.DataFrame:
        """Flatten the history into a DataFrame.

        Args:
            results: Output of :meth:`run_scenario`.

        Returns:
            Polars DataFrame with one row per period: ``period``, ``time``,
            ``n_breaches`` and, per boundary key, ``stock_<key>`` and
            ``breach_<key>`` columns.
        """
        keys = self.boundaries.keys
        rows: list[dict[str, Any]] = []
        for entry in results.history:
            row: dict[str, Any] = {
                "period": entry.period,
                "time": entry.time,
                "n_breaches": entry.breach_count,
            }
            for key, stock, breach in zip(keys, entry.stocks, entry.breaches):
                row[f"stock_{key}"] = stock
                row[f"breach_{key}"] = breach
            rows.append(row)

        if not rows:
            schema: dict[str, Any] = {"period": pl.Int64, "time": pl.Float64, "n_breaches": pl.Int64}
            for key in keys:
                schema[f"stock_{key}"] = pl.Float64
                schema[f"breach_{key}"] = pl.Boolean
            return pl.DataFrame(schema=schema)
        return pl.DataFrame(rows)

    def summary_statistics(self, results: ScenarioResults) -> dict[str, Any]:
        """Per-boundary summary across a run.

        Args:
            results: Output of :meth:`run_scenario`.

        Returns:
            Dictionary with ``n_periods``, ``final_breach_count`` and a
            ``boundaries`` mapping of key -> ``final_stock``, ``peak_stock``,
            ``threshold``, ``final_ratio``, ``periods_breached`` and
            ``first_breach_period`` (None if never breached).
        """
        df = self.aggregate_results(results)
        per_boundary: dict[str, dict[str, Any]] = {}

        for idx, (key, thr) in enumerate(
            zip(self.boundaries.keys, self.boundaries.thresholds)
        ):
            if df.height == 0:
                final = results.initial_stocks[idx]
                per_boundary[key] = {
                    "final_stock": final,
                    "peak_stock": final,
                    "threshold": thr,
                    "final_ratio": final / thr,
                    "periods_breached": 0,
                    "first_breach_period": None,
                }
                continue

            stock_col = df.get_column(f"stock_{key}")
            breached = df.filter(pl.col(f"breach_{key}"))
            final = float(stock_col[-1])
            per_boundary[key] = {
                "final_stock": final,
                "peak_stock": float(stock_col.max()),
                "threshold": thr,
                "final_ratio": final / thr,
                "periods_breached": breached.height,
                "first_breach_period": (
                    int(breached.get_column("period")[0]) if breached.height else None
                ),
            }

        stats: dict[str, Any] = {
            "n_periods": results.n_periods,
            "scheme": results.scheme,
            "final_breach_count": (
                results.history[-1].breach_count if results.history else 0
            ),
            "boundaries": per_boundary,
        }
        logger.info(
            "Summary: {} periods, {} boundaries breached at end",
            stats["n_periods"],
            stats["final_breach_count"],
        )
        return stats
