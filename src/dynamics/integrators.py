"""Fixed-step ODE integrators for planetary-boundary stocks.

Each boundary stock ``B_k`` follows

    dB_k/dt = flux_k(t, B) - regen * threshold_k

where ``flux`` is the caller's pressure inflow per unit time (mitigation
already applied) and ``regen`` is the fraction of the threshold recovered
per unit time.  Stocks are not floored at zero.

Two schemes are registered with :class:`~src.dynamics.registry.SchemeRegistry`:

    - ``euler`` -- explicit Euler, one flux evaluation per step.
    - ``rk4``   -- classical 4th-order Runge-Kutta, four flux evaluations at
      ``t``, ``t + dt/2`` (twice) and ``t + dt``.

The flux function must be pure in ``(t, B)``: the intermediate RK4 stocks
are provisional and never committed.

Typical usage::

    new_stock = integrate_step("rk4", stock, t=0.0, dt=0.25, flux=f, regen=0.05)
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
from numpy.typing import NDArray

from src.dynamics.registry import FluxFunction, SchemeRegistry, register_scheme
from src.portfolio.definition import PB_THRESHOLDS, InvalidDimensionError


def derivative(
    stock: NDArray[np.float64],
    t: float,
    flux: FluxFunction,
    regen: float,
    thresholds: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Evaluate ``dB/dt`` at ``(t, stock)``."""
    inflow = np.asarray(flux(t, stock), dtype=np.float64)
    if inflow.shape != stock.shape:
        raise InvalidDimensionError(
            f"Flux returned shape {inflow.shape}; expected {stock.shape}"
        )
    return inflow - regen * thresholds


@register_scheme("euler")
def euler_step(
    stock: NDArray[np.float64],
    t: float,
    dt: float,
    flux: FluxFunction,
    regen: float,
    thresholds: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Explicit Euler: ``B' = B + dt * f(t, B)``."""
    return stock + dt * derivative(stock, t, flux, regen, thresholds)


@register_scheme("rk4")
def rk4_step(
    stock: NDArray[np.float64],
    t: float,
    dt: float,
    flux: FluxFunction,
    regen: float,
    thresholds: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Classical Runge-Kutta: ``B' = B + dt * (k1 + 2k2 + 2k3 + k4) / 6``."""
    half = dt / 2.0
    k1 = derivative(stock, t, flux, regen, thresholds)
    k2 = derivative(stock + half * k1, t + half, flux, regen, thresholds)
    k3 = derivative(stock + half * k2, t + half, flux, regen, thresholds)
    k4 = derivative(stock + dt * k3, t + dt, flux, regen, thresholds)
    return stock + dt * (k1 + 2.0 * k2 + 2.0 * k3 + k4) / 6.0


def integrate_step(
    scheme: str,
    stock: Sequence[float] | NDArray[np.float64],
    t: float,
    dt: float,
    flux: FluxFunction,
    regen: float,
    thresholds: Sequence[float] | NDArray[np.float64] | None = None,
) -> NDArray[np.float64]:
    """Advance *stock* by one step of the named scheme.

    Args:
        scheme: Registered scheme name (``"euler"`` or ``"rk4"``, any case).
        stock: Current boundary stocks (K).
        t: Current simulated time.
        dt: Step size; must be positive.
        flux: ``flux(t, B)`` returning K inflow rates.
        regen: Regeneration fraction of threshold per unit time (>= 0).
        thresholds: Boundary thresholds; defaults to the planetary set.

    Returns:
        New stock array.  The input is not modified.

    Raises:
        KeyError: If *scheme* is unknown.
        ValueError: If ``dt <= 0`` or ``regen < 0``.
        InvalidDimensionError: If stock, thresholds and flux disagree in length.
    """
    if dt <= 0.0:
        raise ValueError(f"Step size dt must be positive, got {dt}")
    if regen < 0.0:
        raise ValueError(f"Regeneration fraction must be >= 0, got {regen}")

    step = SchemeRegistry().get(scheme)
    current = np.array(stock, dtype=np.float64)
    thr = np.asarray(
        PB_THRESHOLDS if thresholds is None else thresholds, dtype=np.float64
    )
    if current.shape != thr.shape:
        raise InvalidDimensionError(
            f"Stock has shape {current.shape} but thresholds have shape {thr.shape}"
        )
    return step(current, t, dt, flux, regen, thr)
