"""Tests for the scenario engine (allocation evaluation and stock simulation).

Validates:
    - Regression values for the default allocation over eight quarters
    - Continuation of stocks across successive runs
    - Timeline cycling and the even-split fallback for an empty timeline
    - Strict breach comparison at the threshold
    - Aggregation into a polars DataFrame and summary statistics
    - YAML configuration loading and validation

With a constant flux per period every step of the default setup is
``B <- B + dt * (F - regen * threshold)``, so expected stocks are written
in closed form.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import polars as pl
import pytest
from pydantic import ValidationError

from src.models.base_model import ModelConfig
from src.portfolio.definition import (
    DEFAULT_RAW_ALLOCATION,
    PB_THRESHOLDS,
    InvalidDimensionError,
    PortfolioDefinition,
)
from src.risk.thresholds import BoundaryStatus
from src.scenarios.scenario_engine import (
    ScenarioConfig,
    ScenarioEngine,
    load_simulation_config,
)
from src.scenarios.session import ScenarioTimeline, SimulationSession

CLIMATE_STEP_AFTER_1 = 8129.39375
CLIMATE_AFTER_8 = 64375.4
OZONE_AFTER_1 = 5.41525
OZONE_AFTER_8 = 34.642


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def engine() -> ScenarioEngine:
    """Engine with every model switch off and default settings."""
    return ScenarioEngine()


@pytest.fixture
def session(engine: ScenarioEngine) -> SimulationSession:
    return SimulationSession(engine.boundaries)


@pytest.fixture
def default_timeline() -> ScenarioTimeline:
    return ScenarioTimeline([list(DEFAULT_RAW_ALLOCATION)])


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "simulation.yaml"
    path.write_text(
        "model:\n"
        "  supply_chain: true\n"
        "  eta: 0.5\n"
        "  mitigation: [0.1, 0, 0, 0, 0, 0, 0, 0, 0]\n"
        "scenario:\n"
        "  dt: 0.5\n"
        "  regen: 0.0\n"
        "  scheme: Euler\n"
        "  periods: 3\n",
        encoding="utf-8",
    )
    return path


# ---------------------------------------------------------------------------
# Tests: scenario driver
# ---------------------------------------------------------------------------

class TestRunScenario:
    """Tests for :meth:`ScenarioEngine.run_scenario`."""

    def test_default_allocation_regression(
        self,
        engine: ScenarioEngine,
        session: SimulationSession,
        default_timeline: ScenarioTimeline,
    ) -> None:
        results = engine.run_scenario(
            session, default_timeline, periods=8, dt=0.25, regen=0.05, scheme="euler"
        )
        assert results.n_periods == 8
        first, last = results.history[0], results.history[-1]
        assert first.period == 1
        assert last.period == 8
        assert first.stocks[0] == pytest.approx(CLIMATE_STEP_AFTER_1)
        assert first.stocks[7] == pytest.approx(OZONE_AFTER_1)
        assert last.stocks[0] == pytest.approx(CLIMATE_AFTER_8)
        assert last.stocks[7] == pytest.approx(OZONE_AFTER_8)
        assert all(entry.breach_count == 9 for entry in results.history)
        assert last.time == pytest.approx(2.0)

    def test_rk4_matches_euler_for_constant_flux(
        self, engine: ScenarioEngine, default_timeline: ScenarioTimeline
    ) -> None:
        euler = engine.run_scenario(SimulationSession(), default_timeline, periods=8, scheme="euler")
        rk4 = engine.run_scenario(SimulationSession(), default_timeline, periods=8, scheme="rk4")
        np.testing.assert_allclose(rk4.final_stocks, euler.final_stocks, rtol=1e-12)

    def test_runs_continue_from_session_state(
        self, engine: ScenarioEngine, default_timeline: ScenarioTimeline
    ) -> None:
        split = SimulationSession()
        engine.run_scenario(split, default_timeline, periods=4, scheme="euler")
        second = engine.run_scenario(split, default_timeline, periods=4, scheme="euler")

        single = engine.run_scenario(
            SimulationSession(), default_timeline, periods=8, scheme="euler"
        )
        np.testing.assert_array_equal(second.final_stocks, single.final_stocks)
        assert second.history[0].period == 1
        assert second.history[-1].time == pytest.approx(2.0)
        assert split.runs == 2

    def test_empty_timeline_uses_even_split(self, engine: ScenarioEngine) -> None:
        empty = engine.run_scenario(SimulationSession(), ScenarioTimeline(), periods=3)
        even = engine.run_scenario(SimulationSession(), [[1.0] * 7], periods=3)
        none = engine.run_scenario(SimulationSession(), None, periods=3)
        np.testing.assert_array_equal(empty.final_stocks, even.final_stocks)
        np.testing.assert_array_equal(none.final_stocks, even.final_stocks)

    def test_timeline_cycles(self, engine: ScenarioEngine) -> None:
        first = [100, 0, 0, 0, 0, 0, 0]
        second = [0, 100, 0, 0, 0, 0, 0]
        results = engine.run_scenario(
            SimulationSession(), [first, second], periods=4, dt=1.0, regen=0.0, scheme="euler"
        )
        assert len(results.fluxes) == 2
        f1, f2 = np.asarray(results.fluxes[0]), np.asarray(results.fluxes[1])
        np.testing.assert_allclose(f1[0], 100.0 * 20.0)
        np.testing.assert_allclose(f2[0], 100.0 * 900.0)
        expected = 0.5 * np.asarray(PB_THRESHOLDS) + 2.0 * (f1 + f2)
        np.testing.assert_allclose(results.final_stocks, expected)
        np.testing.assert_allclose(
            results.history[0].stocks, 0.5 * np.asarray(PB_THRESHOLDS) + f1
        )

    def test_stock_at_threshold_is_not_breached(self) -> None:
        idle = PortfolioDefinition(industries=("Idle",), intensity=((0.0,) * 9,))
        engine = ScenarioEngine(portfolio=idle)
        session = SimulationSession(initial_stocks=list(PB_THRESHOLDS))
        results = engine.run_scenario(session, None, periods=2, regen=0.0)
        np.testing.assert_array_equal(results.final_stocks, PB_THRESHOLDS)
        assert all(entry.breach_count == 0 for entry in results.history)

    def test_zero_periods(self, engine: ScenarioEngine, session: SimulationSession) -> None:
        results = engine.run_scenario(session, None, periods=0)
        assert results.history == []
        assert results.final_stocks == tuple(0.5 * np.asarray(PB_THRESHOLDS))
        assert session.time == 0.0

    def test_mitigation_slows_accumulation(
        self, engine: ScenarioEngine, default_timeline: ScenarioTimeline
    ) -> None:
        plain = engine.run_scenario(SimulationSession(), default_timeline, periods=2)
        engine.set_mitigation([0.5] + [0.0] * 8)
        mitigated = engine.run_scenario(SimulationSession(), default_timeline, periods=2)
        assert mitigated.final_stocks[0] < plain.final_stocks[0]
        assert mitigated.final_stocks[1] == pytest.approx(plain.final_stocks[1])

    @pytest.mark.parametrize(
        "kwargs, error",
        [
            ({"periods": -1}, ValueError),
            ({"dt": 0.0}, ValueError),
            ({"regen": -0.5}, ValueError),
            ({"scheme": "leapfrog"}, KeyError),
        ],
    )
    def test_invalid_arguments(
        self,
        engine: ScenarioEngine,
        session: SimulationSession,
        kwargs: dict,
        error: type[Exception],
    ) -> None:
        with pytest.raises(error):
            engine.run_scenario(session, None, **kwargs)
        assert session.time == 0.0

    def test_unknown_scheme_rejected_without_periods(
        self, engine: ScenarioEngine, session: SimulationSession
    ) -> None:
        with pytest.raises(KeyError, match="leapfrog"):
            engine.run_scenario(session, None, periods=0, scheme="leapfrog")
        assert session.runs == 0

    def test_wrong_allocation_length(self, engine: ScenarioEngine, session: SimulationSession) -> None:
        with pytest.raises(InvalidDimensionError):
            engine.run_scenario(session, [[1.0, 2.0]], periods=1)


# ---------------------------------------------------------------------------
# Tests: aggregation
# ---------------------------------------------------------------------------

class TestAggregation:
    """Tests for :meth:`aggregate_results` and :meth:`summary_statistics`."""

    def test_aggregate_frame(
        self,
        engine: ScenarioEngine,
        session: SimulationSession,
        default_timeline: ScenarioTimeline,
    ) -> None:
        results = engine.run_scenario(session, default_timeline, periods=8, scheme="euler")
        df = engine.aggregate_results(results)
        assert isinstance(df, pl.DataFrame)
        assert df.height == 8
        assert df.get_column("period").to_list() == list(range(1, 9))
        assert "stock_climate" in df.columns
        assert "breach_ocean_acid" in df.columns
        assert df.get_column("n_breaches").to_list() == [9] * 8
        assert df.get_column("stock_climate")[-1] == pytest.approx(CLIMATE_AFTER_8)

    def test_aggregate_empty(self, engine: ScenarioEngine, session: SimulationSession) -> None:
        df = engine.aggregate_results(engine.run_scenario(session, None, periods=0))
        assert df.height == 0
        assert df.schema["breach_climate"] == pl.Boolean

    def test_summary_statistics(
        self,
        engine: ScenarioEngine,
        session: SimulationSession,
        default_timeline: ScenarioTimeline,
    ) -> None:
        results = engine.run_scenario(session, default_timeline, periods=8, scheme="euler")
        stats = engine.summary_statistics(results)
        assert stats["n_periods"] == 8
        assert stats["final_breach_count"] == 9
        climate = stats["boundaries"]["climate"]
        assert climate["final_stock"] == pytest.approx(CLIMATE_AFTER_8)
        assert climate["peak_stock"] == pytest.approx(CLIMATE_AFTER_8)
        assert climate["periods_breached"] == 8
        assert climate["first_breach_period"] == 1
        assert climate["final_ratio"] == pytest.approx(CLIMATE_AFTER_8 / 188.5)

    def test_summary_never_breached(self) -> None:
        idle = PortfolioDefinition(industries=("Idle",), intensity=((0.0,) * 9,))
        engine = ScenarioEngine(portfolio=idle)
        stats = engine.summary_statistics(
            engine.run_scenario(SimulationSession(), None, periods=4)
        )
        ozone = stats["boundaries"]["ozone"]
        assert ozone["periods_breached"] == 0
        assert ozone["first_breach_period"] is None
        assert ozone["peak_stock"] < 1.24


# ---------------------------------------------------------------------------
# Tests: single-allocation evaluation
# ---------------------------------------------------------------------------

class TestEvaluateAllocation:
    """Tests for :meth:`ScenarioEngine.evaluate_allocation`."""

    def test_default_report(self, engine: ScenarioEngine, session: SimulationSession) -> None:
        report = engine.evaluate_allocation(list(DEFAULT_RAW_ALLOCATION), session)
        assert report.roi == pytest.approx(6.225)
        assert report.allocation.sum() == pytest.approx(1.0)
        assert report.revenue.sum() == pytest.approx(100.0)
        assert report.pressure.per1m[0] == pytest.approx(321.5)
        assert report.statuses[0] is BoundaryStatus.BREACHED
        assert len(report.ratios) == 9
        np.testing.assert_allclose(session.last_revenue, report.revenue)

    def test_none_is_even_split(self, engine: ScenarioEngine) -> None:
        report = engine.evaluate_allocation(None)
        np.testing.assert_allclose(report.allocation, np.full(7, 1.0 / 7.0))

    def test_rebound_uses_previous_evaluation(self, engine: ScenarioEngine) -> None:
        engine.configure(rebound=True)
        session = SimulationSession()
        first = engine.evaluate_allocation(list(DEFAULT_RAW_ALLOCATION), session)
        repeat = engine.evaluate_allocation(list(DEFAULT_RAW_ALLOCATION), session)
        np.testing.assert_allclose(repeat.pressure.totals, first.pressure.totals)

        shifted = [30, 25, 15, 10, 20, 5, 10]
        moved = engine.evaluate_allocation(shifted, session)
        without = ScenarioEngine().evaluate_allocation(shifted)
        assert not np.allclose(moved.pressure.totals, without.pressure.totals)

    def test_roi_feedback_reads_session_stocks(self, engine: ScenarioEngine) -> None:
        engine.configure(roi_feedback=True, eta=0.5)
        session = SimulationSession(initial_stocks=2.0 * np.asarray(PB_THRESHOLDS))
        report = engine.evaluate_allocation(list(DEFAULT_RAW_ALLOCATION), session)
        assert report.roi == pytest.approx(6.225 * 0.5, rel=1e-9)

    def test_set_mitigation_wrong_length(self, engine: ScenarioEngine) -> None:
        engine.set_mitigation([0.3] * 9)
        with pytest.raises(InvalidDimensionError, match="Mitigation"):
            engine.set_mitigation([0.1, 0.2])
        assert engine.model_config.mitigation == [0.3] * 9
        assert engine.pressure_model.config.mitigation == [0.3] * 9

    def test_configure_keeps_config_on_error(self, engine: ScenarioEngine) -> None:
        with pytest.raises(InvalidDimensionError):
            engine.configure(rebound=True, mitigation=[0.5])
        assert engine.model_config.rebound is False

    def test_replace_portfolio_rebuilds_models(self, engine: ScenarioEngine) -> None:
        portfolio = PortfolioDefinition(
            industries=("A", "B"), intensity=((1.0,) * 9, (3.0,) * 9)
        )
        engine.replace_portfolio(portfolio)
        report = engine.evaluate_allocation([1, 1])
        assert report.pressure.per1m[0] == pytest.approx(2.0)
        assert engine.pressure_model.portfolio is portfolio
        assert engine.return_model.portfolio is portfolio

    def test_compute_sensitivity_defaults(self, engine: ScenarioEngine) -> None:
        result = engine.compute_sensitivity(list(DEFAULT_RAW_ALLOCATION))
        assert result.matrix.shape == (9, 7)
        assert result.delta == pytest.approx(0.1)


# ---------------------------------------------------------------------------
# Tests: configuration
# ---------------------------------------------------------------------------

class TestConfiguration:
    """Tests for YAML configuration loading."""

    def test_load_simulation_config(self, config_file: Path) -> None:
        config = load_simulation_config(config_file)
        assert config.model.supply_chain is True
        assert config.model.mitigation[0] == pytest.approx(0.1)
        assert config.scenario.scheme == "euler"
        assert config.scenario.periods == 3
        assert config.scenario.total_capital_m == pytest.approx(100.0)

    def test_engine_uses_loaded_config(self, config_file: Path) -> None:
        engine = ScenarioEngine(config_path=config_file)
        assert engine.pressure_model.config.supply_chain is True
        results = engine.run_scenario(SimulationSession(), None)
        assert results.n_periods == 3
        assert results.scheme == "euler"
        assert results.dt == pytest.approx(0.5)

    def test_repository_config_loads(self) -> None:
        path = Path(__file__).resolve().parents[2] / "config" / "simulation.yaml"
        config = load_simulation_config(path)
        assert config.scenario.scheme == "rk4"
        assert config.model.mitigation == [0.0] * 9

    def test_missing_config(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_simulation_config(tmp_path / "absent.yaml")

    def test_unknown_scheme_rejected(self) -> None:
        with pytest.raises(ValidationError, match="scheme"):
            ScenarioConfig(scheme="leapfrog")

    def test_non_positive_dt_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ScenarioConfig(dt=0.0)

    def test_model_config_defaults(self) -> None:
        config = ModelConfig()
        assert not (config.supply_chain or config.rebound or config.roi_feedback)
        assert config.eta == pytest.approx(0.35)
