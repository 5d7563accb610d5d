"""Tests for the SchemeRegistry singleton and registration decorator.

Verifies:
    - Singleton guarantees
    - Built-in schemes are registered on import
    - Duplicate/invalid registration errors
    - Decorator-based registration
    - Thread safety
"""

from __future__ import annotations

import threading
from typing import Iterator

import numpy as np
import pytest

import src.dynamics.integrators  # noqa: F401  registers euler / rk4
from src.dynamics.registry import SchemeRegistry, register_scheme


def _noop_step(stock, t, dt, flux, regen, thresholds):
    return stock.copy()


@pytest.fixture
def registry() -> Iterator[SchemeRegistry]:
    """Registry that drops any test scheme afterwards."""
    reg = SchemeRegistry()
    before = set(reg.list_schemes())
    yield reg
    for name in set(reg.list_schemes()) - before:
        reg.unregister(name)


class TestSchemeRegistry:
    """Tests for :class:`SchemeRegistry`."""

    def test_singleton(self) -> None:
        assert SchemeRegistry() is SchemeRegistry()

    def test_builtin_schemes(self, registry: SchemeRegistry) -> None:
        assert {"euler", "rk4"} <= set(registry.list_schemes())

    def test_register_and_get(self, registry: SchemeRegistry) -> None:
        registry.register("test_noop", _noop_step)
        assert registry.get("test_noop") is _noop_step
        assert registry.get("TEST_NOOP") is _noop_step

    def test_duplicate_rejected(self, registry: SchemeRegistry) -> None:
        registry.register("test_dup", _noop_step)
        with pytest.raises(ValueError, match="already registered"):
            registry.register("Test_Dup", _noop_step)

    def test_non_callable_rejected(self, registry: SchemeRegistry) -> None:
        with pytest.raises(TypeError, match="callable"):
            registry.register("test_bad", "not a function")  # type: ignore[arg-type]

    def test_unknown_lists_available(self, registry: SchemeRegistry) -> None:
        with pytest.raises(KeyError, match="rk4"):
            registry.get("leapfrog")

    def test_unregister(self, registry: SchemeRegistry) -> None:
        registry.register("test_gone", _noop_step)
        registry.unregister("test_gone")
        assert "test_gone" not in registry.list_schemes()
        with pytest.raises(KeyError):
            registry.unregister("test_gone")

    def test_decorator(self, registry: SchemeRegistry) -> None:
        @register_scheme("test_decorated")
        def step(stock, t, dt, flux, regen, thresholds):
            return stock + dt

        assert registry.get("test_decorated") is step
        np.testing.assert_allclose(
            step(np.zeros(2), 0.0, 0.5, None, 0.0, np.ones(2)), [0.5, 0.5]
        )

    def test_concurrent_access_single_instance(self) -> None:
        instances: list[SchemeRegistry] = []

        def grab() -> None:
            instances.append(SchemeRegistry())

        threads = [threading.Thread(target=grab) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert all(inst is instances[0] for inst in instances)
