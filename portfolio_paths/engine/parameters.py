"""Versioned parameter store.

Holds the current simulation inputs and the latest simulated price matrix.
Every change issues a new request generation; a simulation result is only
committed if it answers the most recently issued generation, so responses
that complete out of order can never overwrite newer state.
"""

from typing import Callable, Optional, Tuple

import structlog

from portfolio_paths.models import PriceMatrix, SimulationParameters

logger = structlog.get_logger()

ParameterListener = Callable[[SimulationParameters, int], None]


class ParameterStore:
    """Current simulation parameters and their latest result."""

    def __init__(self, parameters: Optional[SimulationParameters] = None):
        self._parameters = parameters or SimulationParameters.defaults()
        self._generation = 0
        self._prices: Optional[PriceMatrix] = None
        self._prices_generation = 0
        self._listeners: list[ParameterListener] = []

    @property
    def parameters(self) -> SimulationParameters:
        return self._parameters

    @property
    def generation(self) -> int:
        """Generation of the most recently issued request."""
        return self._generation

    @property
    def prices(self) -> Optional[PriceMatrix]:
        return self._prices

    @property
    def prices_generation(self) -> int:
        """Generation the committed price matrix answers (0 if none)."""
        return self._prices_generation

    def current_prices(self) -> Tuple[Optional[PriceMatrix], int]:
        return self._prices, self._prices_generation

    def subscribe(self, listener: ParameterListener) -> Callable[[], None]:
        """Register a listener called with (parameters, generation) on every change.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update(self, **changes) -> int:
        """Replace any subset of the parameter fields in one step.

        Args:
            **changes: Field name to new value

        Returns:
            The new request generation

        Raises:
            TypeError: If a field name is not a simulation parameter
        """
        unknown = set(changes) - set(SimulationParameters.model_fields)
        if unknown:
            raise TypeError(
                f"Unknown simulation parameter(s): {', '.join(sorted(unknown))}"
            )

        merged = {**self._parameters.model_dump(), **changes}
        self._parameters = SimulationParameters.model_validate(merged)
        return self._advance("parameters_updated", fields=sorted(changes))

    def touch(self) -> int:
        """Request fresh data for the unchanged parameters."""
        return self._advance("parameters_refreshed")

    def reset(self) -> int:
        """Return to the documented defaults and drop the latest result."""
        self._parameters = SimulationParameters.defaults()
        self._prices = None
        self._prices_generation = 0
        return self._advance("parameters_reset")

    def commit_prices(self, prices: PriceMatrix, generation: int) -> bool:
        """Store a simulation result if it answers the latest request.

        Returns:
            True if committed, False if the generation was superseded
        """
        if generation != self._generation:
            return False
        self._prices = prices
        self._prices_generation = generation
        return True

    def _advance(self, event: str, **context) -> int:
        self._generation += 1
        logger.debug(event, generation=self._generation, **context)

        parameters, generation = self._parameters, self._generation
        for listener in list(self._listeners):
            listener(parameters, generation)
        return generation
