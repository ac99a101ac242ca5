"""Portfolio engine - wires parameters, simulation fetches and the registry.

Pipeline:
    parameter change -> one simulation fetch tagged with its generation
    -> commit if still the latest request -> resync registered strategies
    -> snapshot published to subscribers

Failures of the remote services are logged and leave the previous state in
place; nothing raised by a service escapes the engine.
"""

import asyncio
import inspect
from typing import Awaitable, Callable, Optional

import structlog

from portfolio_paths.client import ComputeService
from portfolio_paths.config import EngineSettings, settings
from portfolio_paths.engine.colors import ColorPicker
from portfolio_paths.engine.parameters import ParameterStore
from portfolio_paths.engine.registry import StrategyRegistry
from portfolio_paths.engine.synchronizer import StrategySynchronizer
from portfolio_paths.errors import ComputeServiceError
from portfolio_paths.models import (
    EngineSnapshot,
    MvoConfig,
    PortfolioPath,
    SimulationParameters,
    StrategyKey,
)

logger = structlog.get_logger()

SnapshotListener = Callable[[EngineSnapshot], Optional[Awaitable[None]]]


class PortfolioEngine:
    """Client-side orchestration of simulations and strategy allocations.

    Parameter changes schedule background fetches on the running event loop,
    so ``update_parameters``, ``refresh`` and ``reset`` must be called from
    within one; outside a loop they raise ``RuntimeError`` and leave every
    piece of state untouched. ``wait_idle`` waits for the scheduled work to
    settle.
    """

    def __init__(
        self,
        service: ComputeService,
        engine_settings: Optional[EngineSettings] = None,
        store: Optional[ParameterStore] = None,
        registry: Optional[StrategyRegistry] = None,
        mvo: Optional[MvoConfig] = None,
    ):
        self.settings = engine_settings or settings.engine
        self.service = service
        self.store = store or ParameterStore()
        self.registry = registry or StrategyRegistry(ColorPicker(self.settings.color_seed))
        self.synchronizer = StrategySynchronizer(
            service,
            self.registry,
            self.store.current_prices,
            engine_settings=self.settings,
            mvo=mvo,
        )
        self._listeners: list[SnapshotListener] = []
        self._pending: set[asyncio.Task] = set()
        self.store.subscribe(self._on_parameters_changed)

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a listener called with a snapshot after every commit.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update_parameters(self, **changes) -> int:
        """Change simulation parameters and schedule a fetch.

        Returns:
            The request generation of the scheduled fetch

        Raises:
            TypeError: If a field name is not a simulation parameter
            pydantic.ValidationError: If a value has the wrong type
            RuntimeError: If called outside a running event loop

        A rejected change does not advance the generation or fetch anything.
        """
        self._require_loop()
        return self.store.update(**changes)

    def refresh(self) -> int:
        """Schedule a new simulation for the current parameters."""
        self._require_loop()
        return self.store.touch()

    def reset(self) -> int:
        """Drop every portfolio path and return parameters to their defaults."""
        self._require_loop()
        self.registry.clear()
        generation = self.store.reset()
        logger.info("engine_reset", generation=generation)
        self._spawn(self._notify())
        return generation

    async def allocate(self, strategy: "str | StrategyKey") -> Optional[PortfolioPath]:
        """Allocate a strategy against the current price matrix.

        Returns:
            The registered path, or None if nothing changed
        """
        try:
            key = StrategyKey.parse(strategy)
        except ValueError as e:
            logger.error("allocation_rejected", strategy=str(strategy), error=str(e))
            return None

        path = await self.synchronizer.allocate(key)
        if path is not None:
            await self._notify()
        return path

    def snapshot(self) -> EngineSnapshot:
        prices, prices_generation = self.store.current_prices()
        return EngineSnapshot(
            parameters=self.store.parameters,
            generation=self.store.generation,
            prices=prices,
            prices_generation=prices_generation,
            paths=self.registry.paths,
        )

    async def wait_idle(self):
        """Wait until every scheduled fetch and resync has settled."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @staticmethod
    def _require_loop():
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            raise RuntimeError(
                "PortfolioEngine must be driven from a running event loop"
            ) from None

    def _on_parameters_changed(self, parameters: SimulationParameters, generation: int):
        self._spawn(self._fetch_and_resync(parameters, generation))

    def _spawn(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("engine_task_failed", error=str(exc), exc_info=exc)

    async def _fetch_and_resync(self, parameters: SimulationParameters, generation: int):
        if self.settings.debounce_seconds > 0:
            await asyncio.sleep(self.settings.debounce_seconds)
            if generation != self.store.generation:
                logger.debug("simulation_debounced", generation=generation)
                return

        try:
            prices = await self.service.fetch_simulation(parameters)
        except ComputeServiceError as e:
            logger.error(
                "simulation_unavailable",
                generation=generation,
                error_kind=type(e).__name__,
                error=str(e),
            )
            return

        if not self.store.commit_prices(prices, generation):
            logger.info(
                "simulation_discarded_stale",
                generation=generation,
                latest_generation=self.store.generation,
            )
            return

        logger.info(
            "simulation_fetched",
            generation=generation,
            assets=prices.n_assets,
            steps=prices.n_steps,
        )
        await self._notify()

        if len(self.registry) and await self.synchronizer.resync(prices, generation):
            await self._notify()

    async def _notify(self):
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                result = listener(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("snapshot_listener_failed", error=str(e), exc_info=True)
