"""Portfolio and planetary-boundary definitions for the PB portfolio simulator.

Holds the two reference-data value types every engine component reads:

    - :class:`BoundarySet` -- the nine planetary boundaries, their safe
      thresholds, and the cross-boundary coupling matrix.
    - :class:`PortfolioDefinition` -- the investable industries with their
      baseline returns, intensity rows, supply-chain multipliers and rebound
      elasticities.

Both are frozen pydantic models.  A data import never edits rows in place;
it builds a new definition via :meth:`PortfolioDefinition.replace` and the
caller swaps the whole value.

Typical usage::

    boundaries = BoundarySet()
    portfolio = PortfolioDefinition()
    imported = portfolio.replace(industries=names, intensity=rows)
"""

from __future__ import annotations

from typing import Any

import numpy as np
from loguru import logger
from numpy.typing import NDArray
from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator


class InvalidDimensionError(ValueError):
    """Raised when a vector or matrix does not match the N industries / K boundaries."""


def raise_dimension_error(exc: ValidationError) -> None:
    """Re-raise the first :class:`InvalidDimensionError` wrapped in *exc*.

    pydantic wraps errors raised inside validators.  Callers that rebuild a
    model from plain data use this to surface length mismatches as
    :class:`InvalidDimensionError`; other validation errors pass through.
    """
    for error in exc.errors():
        cause = error.get("ctx", {}).get("error")
        if isinstance(cause, InvalidDimensionError):
            raise cause from exc


# ---------------------------------------------------------------------------
# Planetary boundaries
# ---------------------------------------------------------------------------

NUM_BOUNDARIES: int = 9

PB_NAMES: tuple[str, ...] = (
    "Climate (tCO2 / $1M)",
    "Biodiversity (extinctions / $1M)",
    "Biogeochemical (kg N-eq / $1M)",
    "Chemical pollution (n-kg CP / $1M)",
    "Land-system (ha / $1M)",
    "Freshwater (m3 / $1M)",
    "Ocean acid (kmol H3O+ / $1M)",
    "Ozone (kg CFC-11 eq / $1M)",
    "Aerosols (n-kg AE / $1M)",
)

PB_THRESHOLDS: tuple[float, ...] = (
    188.5,
    0.00000013,
    161.0,
    3000.0,
    33.0,
    81408.0,
    0.0370,
    2.48,
    3000.0,
)

# Sparse one-hop coupling: (source boundary, target boundary, strength).
# Strength is extra normalised pressure on the target per unit of
# normalised pressure on the source.
PB_COUPLING_LINKS: tuple[tuple[str, str, float], ...] = (
    ("Climate", "Ocean acid", 0.05),
    ("Biogeochemical", "Biodiversity", 0.08),
    ("Biogeochemical", "Chemical pollution", 0.04),
)


def _default_coupling() -> tuple[tuple[float, ...], ...]:
    """Build the K x K coupling matrix from :data:`PB_COUPLING_LINKS`."""
    matrix = np.zeros((NUM_BOUNDARIES, NUM_BOUNDARIES), dtype=np.float64)

    def _find(prefix: str) -> int:
        for idx, name in enumerate(PB_NAMES):
            if name.startswith(prefix):
                return idx
        raise KeyError(f"No planetary boundary named '{prefix}'")

    for source, target, strength in PB_COUPLING_LINKS:
        matrix[_find(source), _find(target)] = strength
    return tuple(tuple(float(v) for v in row) for row in matrix)


class BoundarySet(BaseModel):
    """The fixed set of K planetary boundaries.

    Attributes:
        names: Display names, one per boundary.  Order is significant and
            aligns every K-length vector in the engine.
        thresholds: Safe limit per boundary, in the boundary's own unit
            per $1M of revenue.
        coupling: K x K matrix; ``coupling[j][k]`` is the extra normalised
            pressure on boundary *k* per unit normalised pressure on *j*.
            Diagonal entries are ignored.
    """

    names: tuple[str, ...] = PB_NAMES
    thresholds: tuple[float, ...] = PB_THRESHOLDS
    coupling: tuple[tuple[float, ...], ...] = Field(default_factory=_default_coupling)

    model_config = {"frozen": True}

    @field_validator("names")
    @classmethod
    def _check_names(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if len(v) != NUM_BOUNDARIES:
            raise InvalidDimensionError(
                f"Expected {NUM_BOUNDARIES} boundary names, got {len(v)}"
            )
        return v

    @field_validator("thresholds")
    @classmethod
    def _check_thresholds(cls, v: tuple[float, ...]) -> tuple[float, ...]:
        if len(v) != NUM_BOUNDARIES:
            raise InvalidDimensionError(
                f"Expected {NUM_BOUNDARIES} thresholds, got {len(v)}"
            )
        if any(t == 0.0 or not np.isfinite(t) for t in v):
            raise ValueError("Boundary thresholds must be finite and non-zero")
        return v

    @field_validator("coupling")
    @classmethod
    def _check_coupling(
        cls, v: tuple[tuple[float, ...], ...]
    ) -> tuple[tuple[float, ...], ...]:
        if len(v) != NUM_BOUNDARIES or any(len(row) != NUM_BOUNDARIES for row in v):
            raise InvalidDimensionError(
                f"Coupling matrix must be {NUM_BOUNDARIES}x{NUM_BOUNDARIES}"
            )
        return v

    @property
    def size(self) -> int:
        """Number of boundaries (always :data:`NUM_BOUNDARIES`)."""
        return len(self.names)

    @property
    def keys(self) -> list[str]:
        """Short column-safe identifiers, e.g. ``"ocean_acid"``."""
        return [
            name.split(" (")[0].strip().lower().replace("-", "_").replace(" ", "_")
            for name in self.names
        ]

    @property
    def threshold_vector(self) -> NDArray[np.float64]:
        """Thresholds as a float64 array."""
        return np.asarray(self.thresholds, dtype=np.float64)

    @property
    def coupling_matrix(self) -> NDArray[np.float64]:
        """Coupling matrix as a K x K float64 array."""
        return np.asarray(self.coupling, dtype=np.float64)

    def initial_stocks(self) -> NDArray[np.float64]:
        """Starting stock level for a fresh session: half of each threshold."""
        return 0.5 * self.threshold_vector


# ---------------------------------------------------------------------------
# Industries
# ---------------------------------------------------------------------------

DEFAULT_INDUSTRIES: tuple[str, ...] = (
    "Renewable Energy",
    "Fossil Fuels",
    "Agriculture",
    "Mining & Materials",
    "Manufacturing",
    "Waste & Env Services",
    "Reforestation & Conservation",
)

# Annual baseline return (%) per industry.
DEFAULT_BASELINE_RETURNS: tuple[float, ...] = (6.0, 8.0, 5.0, 7.0, 6.5, 4.5, 3.5)

# Pressure per $1M revenue; columns follow PB_NAMES.  Negative entries are
# restorative.
DEFAULT_INTENSITY: tuple[tuple[float, ...], ...] = (
    (20.0, 1e-9, 10.0, 100.0, 1.0, 500.0, 0.005, 0.01, 50.0),
    (900.0, 1e-7, 5.0, 500.0, 5.0, 1000.0, 0.02, 0.5, 400.0),
    (150.0, 1e-6, 900.0, 800.0, 20.0, 30000.0, 0.005, 0.005, 200.0),
    (300.0, 1e-6, 20.0, 700.0, 10.0, 2000.0, 0.003, 0.2, 500.0),
    (200.0, 5e-7, 50.0, 900.0, 2.0, 400.0, 0.008, 0.1, 350.0),
    (120.0, 2e-7, 10.0, 300.0, 1.0, 800.0, 0.002, 0.02, 100.0),
    (-50.0, -1e-6, -2.0, 10.0, -15.0, 50.0, -0.001, 0.0, 5.0),
)

DEFAULT_SUPPLY_CHAIN_MULT: tuple[float, ...] = (1.15, 1.6, 1.4, 1.5, 1.3, 1.2, 1.05)
DEFAULT_REBOUND_ELASTICITY: tuple[float, ...] = (0.02, 0.15, 0.08, 0.05, 0.03, 0.02, -0.02)

DEFAULT_RAW_ALLOCATION: tuple[float, ...] = (15, 25, 15, 10, 20, 5, 10)
TOTAL_CAPITAL_M: float = 100.0  # JUSTIFIED: $100M notional portfolio, revenue in $1M units

FALLBACK_RETURN: float = 5.0
FALLBACK_SUPPLY_CHAIN_MULT: float = 1.0
FALLBACK_REBOUND_ELASTICITY: float = 0.0
FALLBACK_INTENSITY: float = 0.0


def _fit_length(
    values: tuple[float, ...], n: int, fallback: float, label: str
) -> tuple[float, ...]:
    """Pad *values* with *fallback* or truncate them so that ``len == n``."""
    if len(values) == n:
        return values
    logger.warning(
        "{} has {} entries for {} industries; {} with {}",
        label,
        len(values),
        n,
        "padding" if len(values) < n else "truncating",
        fallback,
    )
    if len(values) > n:
        return values[:n]
    return values + (fallback,) * (n - len(values))


class PortfolioDefinition(BaseModel):
    """Immutable description of the N investable industries.

    Attributes:
        industries: Display names; N = ``len(industries)``.
        intensity: N x K pressure per $1M of revenue.  Rows shorter than K
            are zero-padded; longer rows are rejected.
        baseline_returns: Annual baseline return (%) per industry; missing
            entries default to 5.0.
        supply_chain_mult: Upstream multiplier per industry (default 1.0).
        rebound_elasticity: Demand-rebound elasticity per industry
            (default 0.0).

    Raises:
        pydantic.ValidationError: wrapping an :class:`InvalidDimensionError`
            when the intensity row count does not match the industry count.
            :meth:`replace` raises the unwrapped error.
    """

    industries: tuple[str, ...] = DEFAULT_INDUSTRIES
    intensity: tuple[tuple[float, ...], ...] = DEFAULT_INTENSITY
    baseline_returns: tuple[float, ...] = DEFAULT_BASELINE_RETURNS
    supply_chain_mult: tuple[float, ...] = DEFAULT_SUPPLY_CHAIN_MULT
    rebound_elasticity: tuple[float, ...] = DEFAULT_REBOUND_ELASTICITY

    model_config = {"frozen": True}

    @field_validator("industries")
    @classmethod
    def _check_industries(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if not v:
            raise InvalidDimensionError("A portfolio needs at least one industry")
        return v

    @field_validator("intensity")
    @classmethod
    def _check_intensity(
        cls, v: tuple[tuple[float, ...], ...], info: ValidationInfo
    ) -> tuple[tuple[float, ...], ...]:
        industries = info.data.get("industries")
        if industries is not None and len(v) != len(industries):
            raise InvalidDimensionError(
                f"Intensity matrix has {len(v)} rows but there are "
                f"{len(industries)} industries"
            )
        rows: list[tuple[float, ...]] = []
        for idx, row in enumerate(v):
            if len(row) > NUM_BOUNDARIES:
                raise InvalidDimensionError(
                    f"Intensity row {idx} has {len(row)} columns; "
                    f"at most {NUM_BOUNDARIES} allowed"
                )
            rows.append(row + (FALLBACK_INTENSITY,) * (NUM_BOUNDARIES - len(row)))
        return tuple(rows)

    @field_validator("baseline_returns")
    @classmethod
    def _fit_returns(cls, v: tuple[float, ...], info: ValidationInfo) -> tuple[float, ...]:
        return cls._fit_to_industries(v, info, FALLBACK_RETURN, "baseline_returns")

    @field_validator("supply_chain_mult")
    @classmethod
    def _fit_multipliers(
        cls, v: tuple[float, ...], info: ValidationInfo
    ) -> tuple[float, ...]:
        return cls._fit_to_industries(
            v, info, FALLBACK_SUPPLY_CHAIN_MULT, "supply_chain_mult"
        )

    @field_validator("rebound_elasticity")
    @classmethod
    def _fit_elasticities(
        cls, v: tuple[float, ...], info: ValidationInfo
    ) -> tuple[float, ...]:
        return cls._fit_to_industries(
            v, info, FALLBACK_REBOUND_ELASTICITY, "rebound_elasticity"
        )

    @staticmethod
    def _fit_to_industries(
        v: tuple[float, ...], info: ValidationInfo, fallback: float, label: str
    ) -> tuple[float, ...]:
        industries = info.data.get("industries")
        if industries is None:
            return v
        return _fit_length(v, len(industries), fallback, label)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def size(self) -> int:
        """Number of industries N."""
        return len(self.industries)

    @property
    def intensity_matrix(self) -> NDArray[np.float64]:
        """Intensity as an N x K float64 array."""
        return np.asarray(self.intensity, dtype=np.float64)

    @property
    def returns_vector(self) -> NDArray[np.float64]:
        return np.asarray(self.baseline_returns, dtype=np.float64)

    @property
    def supply_chain_vector(self) -> NDArray[np.float64]:
        return np.asarray(self.supply_chain_mult, dtype=np.float64)

    @property
    def rebound_vector(self) -> NDArray[np.float64]:
        return np.asarray(self.rebound_elasticity, dtype=np.float64)

    def replace(self, **changes: Any) -> PortfolioDefinition:
        """Return a new, re-validated definition with *changes* applied.

        Replacing ``industries`` without ``intensity`` (or vice versa) fails
        when the row counts no longer agree; per-industry vectors not given
        in *changes* are carried over and re-fitted to the new N.

        Args:
            **changes: Field values to override.

        Returns:
            A new :class:`PortfolioDefinition`; ``self`` is unchanged.

        Raises:
            InvalidDimensionError: On a row-count or column mismatch.
            pydantic.ValidationError: On any other invalid field.
        """
        data = self.model_dump()
        data.update(changes)
        try:
            new = PortfolioDefinition(**data)
        except ValidationError as exc:
            raise_dimension_error(exc)
            raise
        logger.info(
            "Portfolio definition replaced: {} -> {} industries",
            self.size,
            new.size,
        )
        return new
