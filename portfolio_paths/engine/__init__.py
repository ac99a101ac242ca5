"""Orchestration engine: parameters, registry, synchronizer and valuation."""

from portfolio_paths.engine.colors import ColorPicker
from portfolio_paths.engine.metrics import compute_trajectory_metrics
from portfolio_paths.engine.orchestrator import PortfolioEngine
from portfolio_paths.engine.parameters import ParameterStore
from portfolio_paths.engine.registry import StrategyRegistry
from portfolio_paths.engine.synchronizer import StrategySynchronizer
from portfolio_paths.engine.valuation import NOTIONAL_BASE, compute_value

__all__ = [
    "ColorPicker",
    "NOTIONAL_BASE",
    "ParameterStore",
    "PortfolioEngine",
    "StrategyRegistry",
    "StrategySynchronizer",
    "compute_trajectory_metrics",
    "compute_value",
]
