#!/usr/bin/env python3
"""Command-line runner for the PB portfolio simulator.

Evaluates an allocation (coupled per-$1M pressure, threshold status, ROI),
simulates boundary stocks over a number of quarterly periods, and optionally
writes the sensitivity matrix and a snapshot of the current setup.

Usage::

    # Default allocation, 8 quarters, RK4
    python scripts/run_simulation.py

    # Custom allocation over 24 quarters with Euler steps
    python scripts/run_simulation.py --allocation 10 10 10 10 10 10 40 --periods 24 --scheme euler

    # Restore a snapshot, run its timeline, export sensitivity
    python scripts/run_simulation.py --snapshot snapshot_networked.json --sensitivity-csv out/sensitivity.csv
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any

from loguru import logger

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "simulation.yaml"

# Ensure the src package is importable when running as a script.
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.data.snapshot import SnapshotError, export_snapshot, import_snapshot  # noqa: E402
from src.portfolio.definition import DEFAULT_RAW_ALLOCATION, BoundarySet  # noqa: E402
from src.scenarios.scenario_engine import (  # noqa: E402
    AllocationReport,
    ScenarioEngine,
    ScenarioResults,
)
from src.scenarios.session import ScenarioTimeline, SimulationSession  # noqa: E402


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

def _configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Configure loguru sinks for console and optional file output.

    Args:
        level: Minimum log level for all sinks.
        log_file: Optional path to a rotating log file.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        ),
        colorize=True,
    )
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_path),
            level=level,
            rotation="10 MB",
            retention="30 days",
            compression="gz",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}",
        )
    logger.info("Logging configured at level={}", level)


# ---------------------------------------------------------------------------
# Report formatting
# ---------------------------------------------------------------------------

def format_pressure_summary(report: AllocationReport, boundaries: BoundarySet) -> str:
    """One line per boundary: coupled per-$1M pressure and % of threshold."""
    lines: list[str] = []
    for name, value, ratio in zip(boundaries.names, report.coupled_per1m, report.ratios):
        pct = f"{ratio * 100:.1f}%" if ratio is not None else "n/a"
        flag = " BREACH" if ratio is not None and ratio >= 1.0 else ""
        lines.append(f"{name}: {value:.3e} / $1M ({pct}){flag}")
    return "\n".join(lines)


def format_history(results: ScenarioResults) -> str:
    """``Q<n>: breaches=<count>`` per simulated period."""
    return "\n".join(
        f"Q{entry.period}: breaches={entry.breach_count}" for entry in results.history
    )


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments for the simulation runner.

    Args:
        argv: Argument list (defaults to ``sys.argv[1:]``).

    Returns:
        Parsed :class:`argparse.Namespace`.
    """
    parser = argparse.ArgumentParser(
        prog="run_simulation",
        description="Planetary-boundary portfolio simulator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python scripts/run_simulation.py\n"
            "  python scripts/run_simulation.py --periods 24\n"
            "  python scripts/run_simulation.py --scheme euler --dt 0.1\n"
        ),
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to simulation.yaml.",
    )
    parser.add_argument(
        "--allocation",
        nargs="+",
        type=float,
        default=None,
        metavar="WEIGHT",
        help="Raw allocation weights, one per industry.",
    )
    parser.add_argument(
        "--periods",
        type=int,
        default=None,
        help="Number of quarters to simulate (default from config).",
    )
    parser.add_argument("--scheme", choices=["euler", "rk4"], default=None)
    parser.add_argument("--dt", type=float, default=None)
    parser.add_argument("--regen", type=float, default=None)
    parser.add_argument(
        "--snapshot",
        type=Path,
        default=None,
        help="Snapshot JSON to import before running.",
    )
    parser.add_argument(
        "--export-snapshot",
        type=Path,
        default=None,
        help="Write the active setup to this JSON file.",
    )
    parser.add_argument(
        "--sensitivity-csv",
        type=Path,
        default=None,
        help="Compute the sensitivity matrix and write it to this CSV file.",
    )
    parser.add_argument(
        "--log-level",
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Minimum log level.",
    )
    parser.add_argument("--log-file", default=None, help="Optional rotating log file.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Run one evaluation and simulation pass.

    Args:
        argv: Optional CLI argument list (for testing).

    Returns:
        Exit code (0 on success, non-zero on failure).
    """
    args = parse_args(argv)
    _configure_logging(level=args.log_level, log_file=args.log_file)

    try:
        engine = ScenarioEngine(config_path=args.config)
    except Exception as exc:
        logger.critical("Failed to load configuration: {}", exc)
        return 1

    timeline = ScenarioTimeline()
    if args.snapshot is not None:
        try:
            portfolio, mitigation, timeline = import_snapshot(
                args.snapshot.read_text(encoding="utf-8"),
                engine.portfolio,
                engine.model_config.mitigation,
            )
        except (OSError, SnapshotError) as exc:
            logger.error("Snapshot not imported: {}", exc)
            return 1
        engine.replace_portfolio(portfolio)
        engine.set_mitigation(mitigation)

    allocation: list[Any] | None = args.allocation
    if allocation is None and engine.portfolio.size == len(DEFAULT_RAW_ALLOCATION):
        allocation = list(DEFAULT_RAW_ALLOCATION)

    try:
        session = SimulationSession(engine.boundaries)
        report = engine.evaluate_allocation(allocation, session)
        print(f"ROI: {report.roi:.2f}% (annual avg)")
        print(format_pressure_summary(report, engine.boundaries))

        if len(timeline) == 0:
            timeline.append(allocation if allocation is not None else [1.0] * engine.portfolio.size)
        periods = args.periods
        if periods is None:
            periods = max(engine.scenario_config.periods, len(timeline))

        results = engine.run_scenario(
            session,
            timeline,
            periods=periods,
            dt=args.dt,
            regen=args.regen,
            scheme=args.scheme,
        )
        print(format_history(results))

        if args.sensitivity_csv is not None:
            sensitivity = engine.compute_sensitivity(allocation, session=session)
            sensitivity.write_csv(args.sensitivity_csv)

        if args.export_snapshot is not None:
            args.export_snapshot.parent.mkdir(parents=True, exist_ok=True)
            args.export_snapshot.write_text(
                export_snapshot(engine.portfolio, engine.model_config.mitigation, timeline),
                encoding="utf-8",
            )
            logger.info("Snapshot written to {}", args.export_snapshot)
    except Exception as exc:
        logger.exception("Simulation failed with unexpected error: {}", exc)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
