"""Ordered registry of portfolio paths keyed by strategy.

At most one path exists per strategy. New strategies are appended; known
strategies are updated in place, keeping their position and color. Every
mutation builds a new mapping and swaps it in, so readers never observe a
half-applied change.
"""

from typing import Iterator, Mapping, Optional

import structlog

from portfolio_paths.engine.colors import ColorPicker
from portfolio_paths.models import PortfolioPath, StrategyKey, StrategyValuation

logger = structlog.get_logger()


class StrategyRegistry:
    """Insert-or-update store of portfolio paths."""

    def __init__(self, color_picker: Optional[ColorPicker] = None):
        self._colors = color_picker or ColorPicker()
        self._paths: dict[StrategyKey, PortfolioPath] = {}

    def __len__(self) -> int:
        return len(self._paths)

    def __iter__(self) -> Iterator[PortfolioPath]:
        return iter(self.paths)

    def __contains__(self, strategy: object) -> bool:
        return strategy in self._paths

    @property
    def paths(self) -> tuple[PortfolioPath, ...]:
        """Registered paths in insertion order."""
        return tuple(self._paths.values())

    @property
    def strategies(self) -> tuple[StrategyKey, ...]:
        return tuple(self._paths)

    def get(self, strategy: StrategyKey) -> Optional[PortfolioPath]:
        return self._paths.get(strategy)

    def upsert(
        self,
        strategy: StrategyKey,
        valuation: StrategyValuation,
        generation: int,
    ) -> PortfolioPath:
        """Create the path for a strategy or replace its weights and trajectory.

        Args:
            strategy: Strategy key
            valuation: Fresh weights and trajectory
            generation: Price matrix generation the valuation was derived from

        Returns:
            The registered path
        """
        paths = dict(self._paths)
        path = self._merge(paths.get(strategy), strategy, valuation, generation)
        paths[strategy] = path
        self._paths = paths
        return path

    def apply(
        self,
        updates: Mapping[StrategyKey, StrategyValuation],
        generation: int,
    ) -> list[PortfolioPath]:
        """Replace the valuations of several registered paths at once.

        Strategies that are no longer registered are ignored.

        Returns:
            The updated paths
        """
        paths = dict(self._paths)
        updated = []
        for strategy, valuation in updates.items():
            existing = paths.get(strategy)
            if existing is None:
                logger.debug("registry_update_dropped", strategy=strategy.value)
                continue
            paths[strategy] = self._merge(existing, strategy, valuation, generation)
            updated.append(paths[strategy])
        self._paths = paths
        return updated

    def clear(self):
        """Remove every path."""
        self._paths = {}

    def _merge(
        self,
        existing: Optional[PortfolioPath],
        strategy: StrategyKey,
        valuation: StrategyValuation,
        generation: int,
    ) -> PortfolioPath:
        if existing is None:
            color = self._colors.next_color(p.color for p in self._paths.values())
            logger.info("portfolio_path_created", strategy=strategy.value, color=color)
        else:
            color = existing.color

        return PortfolioPath(
            strategy=strategy,
            weights=valuation.weights,
            trajectory=valuation.trajectory,
            color=color,
            weight_sum=valuation.weight_sum,
            generation=generation,
        )
