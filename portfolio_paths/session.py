"""Session file loading and parsing.

Loads a YAML description of an exploration session (simulation parameters
and the strategies to compare) and validates it with Pydantic.
"""

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from portfolio_paths.models import MvoConfig, SimulationParameters, StrategyKey


class SessionConfig(BaseModel):
    """A set of parameters and the strategies to allocate against them.

    Attributes:
        parameters: Simulation inputs; omitted fields use the defaults
        strategies: Strategies to allocate, in display order
        mvo: Optional mean-variance tuning
    """

    parameters: SimulationParameters = Field(default_factory=SimulationParameters)
    strategies: list[StrategyKey] = Field(default_factory=lambda: [StrategyKey.EW])
    mvo: Optional[MvoConfig] = None

    @field_validator("strategies", mode="before")
    @classmethod
    def parse_strategies(cls, strategies):
        """Resolve labels and aliases, keeping the first occurrence of each."""
        if isinstance(strategies, str):
            strategies = [strategies]
        parsed = [StrategyKey.parse(strategy) for strategy in strategies]
        return list(dict.fromkeys(parsed))


def load_session(session_path: str | Path) -> SessionConfig:
    """Load and validate a session from a YAML file.

    Args:
        session_path: Path to YAML session file

    Returns:
        Validated SessionConfig object

    Raises:
        FileNotFoundError: If session file doesn't exist
        yaml.YAMLError: If YAML is malformed
        pydantic.ValidationError: If session doesn't match schema
    """
    session_path = Path(session_path)

    if not session_path.exists():
        raise FileNotFoundError(f"Session file not found: {session_path}")

    with open(session_path, "r") as f:
        raw_session = yaml.safe_load(f) or {}

    return SessionConfig(**raw_session)
