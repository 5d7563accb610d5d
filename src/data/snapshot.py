"""Snapshot import/export for portfolio definitions and scenario timelines.

A snapshot carries everything needed to restore a working setup: industry
names, the intensity matrix, mitigation, supply-chain multipliers, rebound
elasticities and the stamped scenario periods.  Field names follow the JSON
payload written by the browser front end (``mitigationPct``, ...).

Importing never touches the caller's objects.  It returns a new
definition, mitigation list and timeline which the caller swaps in as a
unit; any validation failure raises :class:`SnapshotError` first.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from src.models.base_model import ModelConfig
from src.portfolio.definition import InvalidDimensionError, PortfolioDefinition
from src.scenarios.session import ScenarioTimeline


class SnapshotError(ValueError):
    """Recoverable failure while reading a snapshot payload."""


class PortfolioSnapshot(BaseModel):
    """Serialisable snapshot payload.

    Attributes:
        timestamp: ISO-8601 creation time.
        industries: Industry display names (N).
        intensity: N x 9 intensity rows.
        mitigation_pct: Per-boundary mitigation fractions (9), or None.
        supply_chain_mult: Per-industry multipliers, or None.
        rebound_elasticity: Per-industry elasticities, or None.
        scenario_quarters: Stamped per-period raw allocations, or None.
    """

    timestamp: str | None = None
    industries: list[str]
    intensity: list[list[float]]
    mitigation_pct: list[float] | None = Field(default=None, alias="mitigationPct")
    supply_chain_mult: list[float] | None = Field(default=None, alias="supplyChainMult")
    rebound_elasticity: list[float] | None = Field(default=None, alias="reboundElasticity")
    scenario_quarters: list[list[float]] | None = Field(default=None, alias="scenarioQuarters")

    model_config = {"populate_by_name": True}


def export_snapshot(
    portfolio: PortfolioDefinition,
    mitigation: list[float],
    timeline: ScenarioTimeline | None = None,
) -> str:
    """Serialise the current setup to a JSON string.

    Args:
        portfolio: Active portfolio definition.
        mitigation: Active per-boundary mitigation.
        timeline: Optional stamped scenario periods.

    Returns:
        Pretty-printed JSON using the front-end field names.
    """
    snapshot = PortfolioSnapshot(
        timestamp=datetime.now(timezone.utc).isoformat(),
        industries=list(portfolio.industries),
        intensity=[list(row) for row in portfolio.intensity],
        mitigation_pct=list(mitigation),
        supply_chain_mult=list(portfolio.supply_chain_mult),
        rebound_elasticity=list(portfolio.rebound_elasticity),
        scenario_quarters=timeline.periods if timeline is not None else [],
    )
    logger.info(
        "Exported snapshot: {} industries, {} scenario periods",
        len(snapshot.industries),
        len(snapshot.scenario_quarters or []),
    )
    return snapshot.model_dump_json(by_alias=True, indent=2)


def import_snapshot(
    text: str,
    current: PortfolioDefinition,
    current_mitigation: list[float],
) -> tuple[PortfolioDefinition, list[float], ScenarioTimeline]:
    """Parse a snapshot and build replacement state.

    Fields missing from the payload fall back to *current* /
    *current_mitigation*.  Baseline returns are not part of the payload;
    the current ones carry over and are padded with the 5.0 fallback for
    added industries.

    Args:
        text: JSON payload.
        current: Active portfolio definition.
        current_mitigation: Active mitigation vector.

    Returns:
        ``(portfolio, mitigation, timeline)`` to be swapped in together.

    Raises:
        SnapshotError: On malformed JSON, missing ``industries`` /
            ``intensity``, dimensions that do not validate, or scenario
            periods whose length differs from the industry count.
    """
    try:
        payload: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SnapshotError(f"Invalid JSON: {exc}") from exc

    if not isinstance(payload, dict) or not payload.get("industries") or not payload.get("intensity"):
        raise SnapshotError("Invalid snapshot: 'industries' and 'intensity' are required")

    try:
        snapshot = PortfolioSnapshot.model_validate(payload)
        portfolio = current.replace(
            industries=tuple(snapshot.industries),
            intensity=tuple(tuple(row) for row in snapshot.intensity),
            supply_chain_mult=tuple(
                snapshot.supply_chain_mult
                if snapshot.supply_chain_mult is not None
                else current.supply_chain_mult
            ),
            rebound_elasticity=tuple(
                snapshot.rebound_elasticity
                if snapshot.rebound_elasticity is not None
                else current.rebound_elasticity
            ),
        )
        mitigation = ModelConfig(
            mitigation=(
                snapshot.mitigation_pct
                if snapshot.mitigation_pct is not None
                else current_mitigation
            )
        ).mitigation
    except (ValidationError, InvalidDimensionError) as exc:
        raise SnapshotError(f"Invalid snapshot: {exc}") from exc

    quarters = snapshot.scenario_quarters or []
    for idx, quarter in enumerate(quarters):
        if len(quarter) != portfolio.size:
            raise SnapshotError(
                f"Invalid snapshot: scenario period {idx + 1} has {len(quarter)} "
                f"weights for {portfolio.size} industries"
            )
    timeline = ScenarioTimeline(quarters)

    logger.info(
        "Imported snapshot: {} industries, {} scenario periods",
        portfolio.size,
        len(timeline),
    )
    return portfolio, mitigation, timeline
