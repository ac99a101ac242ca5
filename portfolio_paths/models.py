"""Pydantic models for simulation inputs, service payloads and portfolio paths."""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_SAMPLE_COUNT = 10
DEFAULT_HORIZON_LENGTH = 30
DEFAULT_DRIFT = 50 / 10000
DEFAULT_VOLATILITY = 150 / 10000
DEFAULT_STARTING_VALUE = 50.0


class Frequency(str, Enum):
    """Time step length of a simulated path."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @property
    def dt(self) -> float:
        """Fraction of a year covered by one step."""
        return {
            Frequency.DAILY: 1.0 / 252.0,
            Frequency.WEEKLY: 1.0 / 52.0,
            Frequency.MONTHLY: 1.0 / 12.0,
        }[self]


class StrategyKey(str, Enum):
    """Allocation strategies understood by the allocation service."""

    EW = "ew"  # Equal weight
    MVO = "mvo"  # Mean-variance optimisation
    HRP = "hrp"  # Hierarchical risk parity

    @classmethod
    def _missing_(cls, value):
        if not isinstance(value, str):
            return None
        key = value.strip().lower()
        key = _STRATEGY_ALIASES.get(key, key)
        for member in cls:
            if member.value == key:
                return member
        return None

    @classmethod
    def parse(cls, value: "str | StrategyKey") -> "StrategyKey":
        """Resolve a key, display label or alias to a strategy.

        Raises:
            ValueError: If the value names no known strategy
        """
        try:
            return cls(value)
        except ValueError as exc:
            available = ", ".join(member.value for member in cls)
            raise ValueError(
                f"Unknown strategy '{value}'. Available: {available}"
            ) from exc

    @property
    def label(self) -> str:
        """Display form of the strategy (e.g. ``EW``)."""
        return self.value.upper()


_STRATEGY_ALIASES = {
    "equal": StrategyKey.EW.value,
}


class SimulationParameters(BaseModel):
    """One coherent request to the simulation service.

    Values are not range-checked here: the service rejects what it cannot
    simulate and the rejection is surfaced as a fetch error.
    """

    model_config = ConfigDict(frozen=True)

    sample_count: int = DEFAULT_SAMPLE_COUNT
    horizon_length: int = DEFAULT_HORIZON_LENGTH
    drift: float = DEFAULT_DRIFT
    volatility: float = DEFAULT_VOLATILITY
    starting_value: float = DEFAULT_STARTING_VALUE
    frequency: Optional[Frequency] = None

    @classmethod
    def defaults(cls) -> "SimulationParameters":
        return cls()

    def to_query(self) -> Dict[str, Any]:
        """Render the ``/simulate`` query string parameters."""
        query: Dict[str, Any] = {
            "samples": self.sample_count,
            "size": self.horizon_length,
            "mu": self.drift,
            "sigma": self.volatility,
            "starting_value": self.starting_value,
        }
        if self.frequency is not None:
            query["dt"] = self.frequency.dt
        return query


class PriceMatrix(BaseModel):
    """Simulated prices, one row per path and one column per time step."""

    model_config = ConfigDict(frozen=True)

    rows: Tuple[Tuple[float, ...], ...] = ()

    @field_validator("rows")
    @classmethod
    def validate_equal_lengths(cls, rows):
        """All series must cover the same time steps."""
        if rows:
            width = len(rows[0])
            for index, row in enumerate(rows):
                if len(row) != width:
                    raise ValueError(
                        f"Series {index} has {len(row)} values, expected {width}"
                    )
        return rows

    @property
    def n_assets(self) -> int:
        return len(self.rows)

    @property
    def n_steps(self) -> int:
        return len(self.rows[0]) if self.rows else 0

    @property
    def is_empty(self) -> bool:
        return self.n_assets == 0 or self.n_steps == 0

    def to_numpy(self) -> np.ndarray:
        return np.asarray(self.rows, dtype=float).reshape(self.n_assets, self.n_steps)

    def to_lists(self) -> List[List[float]]:
        return [list(row) for row in self.rows]


class MvoConfig(BaseModel):
    """Tuning forwarded to the mean-variance allocator."""

    regularization: Optional[float] = None
    shrinkage: Optional[float] = None


class SimulationResponse(BaseModel):
    """Body returned by the simulation service."""

    results: Optional[List[List[float]]] = None
    message: Optional[str] = None


class AllocationRequest(BaseModel):
    """Body sent to the allocation service."""

    prices: List[List[float]]
    strategy: str
    mvo: Optional[MvoConfig] = None


class AllocationResponse(BaseModel):
    """Body returned by the allocation service."""

    model_config = ConfigDict(populate_by_name=True)

    strategy: str
    weights: List[float]
    weight_sum: float = Field(alias="sum")


class StrategyValuation(BaseModel):
    """Weights for one strategy and the value trajectory derived from them."""

    model_config = ConfigDict(frozen=True)

    weights: Tuple[float, ...]
    trajectory: Tuple[float, ...]
    weight_sum: float


class PortfolioPath(BaseModel):
    """A registered strategy and its latest derived trajectory.

    Attributes:
        strategy: Strategy key the path is registered under
        weights: Latest weight vector, one entry per asset
        trajectory: Portfolio value per time step
        color: Display color, fixed for the life of the entry
        weight_sum: Sum of weights as reported by the allocation service
        generation: Price matrix generation the trajectory was derived from
    """

    model_config = ConfigDict(frozen=True)

    strategy: StrategyKey
    weights: Tuple[float, ...]
    trajectory: Tuple[float, ...]
    color: str
    weight_sum: float
    generation: int

    @property
    def label(self) -> str:
        return self.strategy.label


class EngineSnapshot(BaseModel):
    """Consistent view of the engine handed to renderers."""

    model_config = ConfigDict(frozen=True)

    parameters: SimulationParameters
    generation: int
    prices: Optional[PriceMatrix] = None
    prices_generation: int = 0
    paths: Tuple[PortfolioPath, ...] = ()

    @property
    def stale_paths(self) -> Tuple[PortfolioPath, ...]:
        """Paths still derived from an older price matrix after a partial resync."""
        return tuple(
            path for path in self.paths if path.generation != self.prices_generation
        )
