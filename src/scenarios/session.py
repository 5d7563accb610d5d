"""Simulation session state and the editable scenario timeline.

A :class:`SimulationSession` owns the boundary stock state of one simulated
portfolio.  Stocks start at half of each threshold and carry over between
scenario runs until :meth:`SimulationSession.reset` is called.  Callers
create one session per portfolio and pass it to every driver call; the
session has no locking, so calls that mutate it must be serialised.

A :class:`ScenarioTimeline` is the ordered list of per-period (quarterly)
raw allocations.  The driver reads it and never modifies it.
"""

from __future__ import annotations

from typing import Any, Iterator, Sequence

import numpy as np
from loguru import logger
from numpy.typing import NDArray

from src.portfolio.definition import BoundarySet, InvalidDimensionError


class SimulationSession:
    """Mutable boundary-stock state carried across scenario runs.

    Args:
        boundaries: Boundary set used for the initial condition.
        initial_stocks: Optional explicit starting stocks (K); defaults to
            half of each threshold.

    Attributes:
        time: Cumulative simulated time committed so far.
        last_revenue: Revenue from the most recent allocation evaluation;
            the rebound effect compares against it.
    """

    def __init__(
        self,
        boundaries: BoundarySet | None = None,
        initial_stocks: Sequence[float] | NDArray[np.float64] | None = None,
    ) -> None:
        self.boundaries = boundaries or BoundarySet()
        self._initial = self._as_stock(
            self.boundaries.initial_stocks() if initial_stocks is None else initial_stocks
        )
        self._stocks = self._initial.copy()
        self.time: float = 0.0
        self.last_revenue: NDArray[np.float64] | None = None
        self.runs: int = 0

    def _as_stock(self, values: Sequence[float] | NDArray[np.float64]) -> NDArray[np.float64]:
        arr = np.array(values, dtype=np.float64)
        if arr.shape != (self.boundaries.size,):
            raise InvalidDimensionError(
                f"Stock vector has shape {arr.shape}; expected ({self.boundaries.size},)"
            )
        return arr

    @property
    def stocks(self) -> NDArray[np.float64]:
        """Copy of the current boundary stocks."""
        return self._stocks.copy()

    def commit(self, stocks: NDArray[np.float64], dt: float) -> None:
        """Store the result of one integrator step and advance time."""
        self._stocks = self._as_stock(stocks)
        self.time += dt

    def reset(self) -> None:
        """Return to the initial stocks and time zero."""
        self._stocks = self._initial.copy()
        self.time = 0.0
        self.last_revenue = None
        self.runs = 0
        logger.info("Simulation session reset to initial stocks")

    def __repr__(self) -> str:
        return f"<SimulationSession t={self.time:.2f} runs={self.runs}>"


class ScenarioTimeline:
    """Ordered per-period raw allocations.

    Args:
        periods: Optional initial allocations, one per period.
    """

    def __init__(self, periods: Sequence[Sequence[Any]] | None = None) -> None:
        self._periods: list[list[Any]] = [list(p) for p in (periods or [])]

    def append(self, allocation: Sequence[Any]) -> None:
        """Stamp an allocation as the next period."""
        self._periods.append(list(allocation))

    def pop(self) -> list[Any] | None:
        """Remove and return the last period, or None when empty."""
        if not self._periods:
            return None
        return self._periods.pop()

    def clear(self) -> None:
        self._periods.clear()

    @property
    def periods(self) -> list[list[Any]]:
        """Copy of the stored allocations."""
        return [list(p) for p in self._periods]

    def __len__(self) -> int:
        return len(self._periods)

    def __iter__(self) -> Iterator[list[Any]]:
        return iter(self.periods)

    def __repr__(self) -> str:
        return f"<ScenarioTimeline periods={len(self)}>"
