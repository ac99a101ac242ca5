"""Strategy synchronizer.

Keeps the registry consistent with the latest price matrix:

- ``allocate`` derives one strategy against the current matrix and upserts it.
- ``resync`` re-derives every registered strategy against a new matrix and
  commits the batch in one step once all calls have settled. A strategy
  whose allocation fails keeps its previous weights and trajectory.
"""

import asyncio
from typing import Callable, Optional, Tuple

import structlog

from portfolio_paths.client import ComputeService
from portfolio_paths.config import EngineSettings, settings
from portfolio_paths.engine.registry import StrategyRegistry
from portfolio_paths.engine.valuation import compute_value
from portfolio_paths.errors import ComputeServiceError, PreconditionSkipped
from portfolio_paths.models import (
    MvoConfig,
    PortfolioPath,
    PriceMatrix,
    StrategyKey,
    StrategyValuation,
)

logger = structlog.get_logger()

PriceSource = Callable[[], Tuple[Optional[PriceMatrix], int]]


class StrategySynchronizer:
    """Derives portfolio paths through the allocation service."""

    def __init__(
        self,
        service: ComputeService,
        registry: StrategyRegistry,
        current_prices: PriceSource,
        engine_settings: Optional[EngineSettings] = None,
        mvo: Optional[MvoConfig] = None,
    ):
        """Initialize the synchronizer.

        Args:
            service: Allocation service
            registry: Registry the derived paths are committed to
            current_prices: Returns the committed price matrix and its generation
            engine_settings: Concurrency and retry limits
            mvo: Mean-variance tuning forwarded with every allocation
        """
        self.service = service
        self.registry = registry
        self.current_prices = current_prices
        self.settings = engine_settings or settings.engine
        self.mvo = mvo

    async def derive(
        self,
        strategy: StrategyKey,
        prices: PriceMatrix,
    ) -> Optional[StrategyValuation]:
        """Fetch weights for one strategy and compute its trajectory.

        Returns:
            The valuation, or None if the allocation was skipped or failed
        """
        try:
            allocation = await self.service.fetch_allocation(prices, strategy, self.mvo)
        except PreconditionSkipped as e:
            logger.debug("allocation_skipped", strategy=strategy.value, reason=str(e))
            return None
        except ComputeServiceError as e:
            logger.error(
                "allocation_failed",
                strategy=strategy.value,
                error_kind=type(e).__name__,
                error=str(e),
            )
            return None

        try:
            trajectory = compute_value(prices, allocation.weights)
        except ValueError as e:
            logger.error("valuation_failed", strategy=strategy.value, error=str(e))
            return None

        if abs(allocation.weight_sum - 1.0) > 1e-6:
            logger.debug(
                "weights_not_normalized",
                strategy=strategy.value,
                weight_sum=allocation.weight_sum,
            )

        return StrategyValuation(
            weights=tuple(allocation.weights),
            trajectory=tuple(trajectory),
            weight_sum=allocation.weight_sum,
        )

    async def allocate(self, strategy: StrategyKey) -> Optional[PortfolioPath]:
        """Allocate one strategy against the current price matrix.

        If the matrix is replaced while the call is in flight the result is
        dropped and the allocation re-run against the new matrix.

        Returns:
            The registered path, or None if nothing was committed
        """
        attempts = self.settings.max_stale_allocation_retries + 1
        for _ in range(attempts):
            prices, generation = self.current_prices()
            if prices is None or prices.is_empty:
                logger.debug(
                    "allocation_skipped",
                    strategy=strategy.value,
                    reason="no price matrix",
                )
                return None

            valuation = await self.derive(strategy, prices)
            if valuation is None:
                return None

            _, current_generation = self.current_prices()
            if current_generation == generation:
                path = self.registry.upsert(strategy, valuation, generation)
                logger.info(
                    "allocation_committed",
                    strategy=strategy.value,
                    generation=generation,
                    weight_sum=valuation.weight_sum,
                )
                return path

            logger.info(
                "allocation_superseded",
                strategy=strategy.value,
                generation=generation,
                current_generation=current_generation,
            )

        logger.warning("allocation_abandoned", strategy=strategy.value, attempts=attempts)
        return None

    async def resync(self, prices: PriceMatrix, generation: int) -> bool:
        """Re-derive every registered path against a new price matrix.

        Args:
            prices: The newly committed price matrix
            generation: Its generation

        Returns:
            True if the batch was committed, False if there was nothing to do
            or the matrix was superseded before the batch settled
        """
        strategies = self.registry.strategies
        if not strategies:
            return False

        semaphore = asyncio.Semaphore(max(1, self.settings.max_concurrent_allocations))

        async def rederive(strategy: StrategyKey):
            async with semaphore:
                return strategy, await self.derive(strategy, prices)

        results = await asyncio.gather(*(rederive(s) for s in strategies))

        _, current_generation = self.current_prices()
        if current_generation != generation:
            logger.info(
                "resync_discarded_stale",
                generation=generation,
                current_generation=current_generation,
            )
            return False

        updates = {
            strategy: valuation
            for strategy, valuation in results
            if valuation is not None
        }
        self.registry.apply(updates, generation)

        logger.info(
            "resync_complete",
            generation=generation,
            refreshed=len(updates),
            kept_previous=len(results) - len(updates),
        )
        return True
