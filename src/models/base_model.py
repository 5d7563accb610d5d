"""Abstract base model interface for the PB portfolio engine.

Provides the configuration container shared by the pressure and return
models and the common contract they implement: both read an immutable
:class:`PortfolioDefinition` and :class:`BoundarySet`, validate incoming
vectors against N industries / K boundaries, and expose their parameters
for introspection.

Typical usage::

    class MyModel(BaseModel):
        def get_params(self) -> dict: ...

    model = MyModel(ModelConfig(supply_chain=True), portfolio, boundaries)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence

import numpy as np
from loguru import logger
from numpy.typing import NDArray
from pydantic import BaseModel as PydanticBaseModel, Field, field_validator

from src.portfolio.definition import (
    NUM_BOUNDARIES,
    BoundarySet,
    InvalidDimensionError,
    PortfolioDefinition,
)

EPS: float = 1e-9


class ModelConfig(PydanticBaseModel):
    """Switches and parameters for the pressure and return models.

    Attributes:
        supply_chain: Scale intensities by each industry's supply-chain
            multiplier.
        rebound: Scale intensities by ``1 + elasticity * revenue_change``
            when a previous revenue vector is supplied.
        roi_feedback: Penalise returns for boundary stocks above threshold.
        eta: Strength of the ROI feedback penalty (typically 0-1).
        mitigation: Per-boundary fractional abatement in ``[0, 1]``.
            Out-of-range values are clamped with a warning.
    """

    supply_chain: bool = False
    rebound: bool = False
    roi_feedback: bool = False
    eta: float = 0.35
    mitigation: list[float] = Field(
        default_factory=lambda: [0.0] * NUM_BOUNDARIES
    )

    model_config = {"frozen": False}

    @field_validator("mitigation")
    @classmethod
    def _clamp_mitigation(cls, v: list[float]) -> list[float]:
        if len(v) != NUM_BOUNDARIES:
            raise InvalidDimensionError(
                f"Mitigation vector must have {NUM_BOUNDARIES} entries, got {len(v)}"
            )
        clamped = [min(1.0, max(0.0, x)) if np.isfinite(x) else 0.0 for x in v]
        if clamped != list(v):
            logger.warning("Mitigation values clamped to [0, 1]: {} -> {}", v, clamped)
        return clamped

    @property
    def mitigation_vector(self) -> NDArray[np.float64]:
        return np.asarray(self.mitigation, dtype=np.float64)


class BaseModel(ABC):
    """Abstract base for the engine's portfolio models.

    Subclasses **must** implement :pymethod:`get_params`.  The base class
    holds the shared reference data and provides dimension validation so
    that a mismatched allocation is rejected rather than silently
    truncated or padded.

    Args:
        config: A :class:`ModelConfig` carrying the feature switches.
        portfolio: Industries and their coefficients.
        boundaries: Planetary boundaries, thresholds and coupling.
    """

    def __init__(
        self,
        config: ModelConfig | None = None,
        portfolio: PortfolioDefinition | None = None,
        boundaries: BoundarySet | None = None,
    ) -> None:
        self.config = config or ModelConfig()
        self.portfolio = portfolio or PortfolioDefinition()
        self.boundaries = boundaries or BoundarySet()
        logger.debug(
            "Initialized {} with {} industries x {} boundaries",
            self.__class__.__name__,
            self.portfolio.size,
            self.boundaries.size,
        )

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abstractmethod
    def get_params(self) -> dict[str, Any]:
        """Return the model's current switches and coefficients.

        Returns:
            Dictionary mapping parameter names to their values.
        """

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _industry_vector(
        self, values: Sequence[float] | NDArray[np.float64], label: str
    ) -> NDArray[np.float64]:
        """Convert *values* to an N-length array or raise.

        Raises:
            InvalidDimensionError: If ``len(values)`` differs from the number
                of industries.
        """
        arr = np.asarray(values, dtype=np.float64)
        if arr.shape != (self.portfolio.size,):
            raise InvalidDimensionError(
                f"{label} has shape {arr.shape} but the portfolio has "
                f"{self.portfolio.size} industries"
            )
        return arr

    def _boundary_vector(
        self, values: Sequence[float] | NDArray[np.float64], label: str
    ) -> NDArray[np.float64]:
        """Convert *values* to a K-length array or raise.

        Raises:
            InvalidDimensionError: If ``len(values)`` differs from K.
        """
        arr = np.asarray(values, dtype=np.float64)
        if arr.shape != (self.boundaries.size,):
            raise InvalidDimensionError(
                f"{label} has shape {arr.shape}; expected "
                f"({self.boundaries.size},)"
            )
        return arr

    def adjusted_intensity(self) -> NDArray[np.float64]:
        """Intensity matrix scaled by supply-chain multipliers when enabled.

        Returns:
            N x K array.  Without the supply-chain switch this equals the
            raw intensity matrix.
        """
        matrix = self.portfolio.intensity_matrix
        if self.config.supply_chain:
            return matrix * self.portfolio.supply_chain_vector[:, np.newaxis]
        return matrix

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} industries={self.portfolio.size} "
            f"supply_chain={self.config.supply_chain} "
            f"rebound={self.config.rebound}>"
        )
