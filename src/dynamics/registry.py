"""Integrator scheme registry for the boundary-stock dynamics.

Provides a singleton :class:`SchemeRegistry` that maps scheme names to
fixed-step functions, either imperatively or via the
:func:`register_scheme` decorator, so the scenario driver can select a
scheme from configuration.

Typical usage::

    @register_scheme("heun")
    def heun_step(stock, t, dt, flux, regen, thresholds): ...

    # Later, in application code:
    step = SchemeRegistry().get("heun")
"""

from __future__ import annotations

import threading
from typing import Callable, Protocol, TypeVar

import numpy as np
from loguru import logger
from numpy.typing import NDArray

FluxFunction = Callable[[float, NDArray[np.float64]], NDArray[np.float64]]


class StepFunction(Protocol):
    """Signature every registered scheme implements."""

    def __call__(
        self,
        stock: NDArray[np.float64],
        t: float,
        dt: float,
        flux: FluxFunction,
        regen: float,
        thresholds: NDArray[np.float64],
    ) -> NDArray[np.float64]: ...


F = TypeVar("F", bound=Callable[..., NDArray[np.float64]])


class SchemeRegistry:
    """Thread-safe singleton registry mapping names to step functions.

    Names are stored lower-case, so ``"RK4"`` and ``"rk4"`` resolve to the
    same scheme.

    Example::

        registry = SchemeRegistry()
        registry.register("euler", euler_step)
        step = registry.get("Euler")
    """

    _instance: SchemeRegistry | None = None
    _lock: threading.Lock = threading.Lock()

    def __new__(cls) -> SchemeRegistry:
        """Return the singleton instance, creating it on first access."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    instance = super().__new__(cls)
                    instance._registry: dict[str, StepFunction] = {}
                    cls._instance = instance
                    logger.debug("SchemeRegistry singleton created.")
        return cls._instance

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def register(self, name: str, step: StepFunction) -> None:
        """Register a step function under *name*.

        Args:
            name: Scheme key (case-insensitive), e.g. ``"rk4"``.
            step: Callable implementing :class:`StepFunction`.

        Raises:
            TypeError: If *step* is not callable.
            ValueError: If *name* is already registered.
        """
        if not callable(step):
            raise TypeError(f"step must be callable, got {step!r}")

        key = name.lower()
        if key in self._registry:
            raise ValueError(
                f"A scheme is already registered under the name '{key}'. "
                f"Existing: {getattr(self._registry[key], '__name__', self._registry[key])}"
            )

        self._registry[key] = step
        logger.debug("Registered integrator scheme '{}'", key)

    def get(self, name: str) -> StepFunction:
        """Look up a registered step function.

        Args:
            name: Scheme key, any case.

        Returns:
            The registered step function.

        Raises:
            KeyError: If *name* is not in the registry.
        """
        key = name.lower()
        if key not in self._registry:
            available = ", ".join(sorted(self._registry)) or "(none)"
            raise KeyError(
                f"No integrator scheme registered under '{name}'. "
                f"Available schemes: {available}"
            )
        return self._registry[key]

    def list_schemes(self) -> list[str]:
        """Return the sorted list of registered scheme names."""
        return sorted(self._registry)

    def unregister(self, name: str) -> None:
        """Remove a scheme from the registry.

        Raises:
            KeyError: If *name* is not registered.
        """
        key = name.lower()
        if key not in self._registry:
            raise KeyError(f"No integrator scheme registered under '{name}'.")
        del self._registry[key]
        logger.debug("Unregistered integrator scheme '{}'", key)


def register_scheme(name: str) -> Callable[[F], F]:
    """Function decorator that registers a step function globally.

    Args:
        name: The key under which the decorated function is registered.

    Returns:
        The original function, unmodified.
    """

    def decorator(fn: F) -> F:
        SchemeRegistry().register(name, fn)
        return fn

    return decorator
