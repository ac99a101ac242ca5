"""Async client for the simulation and allocation services."""

import asyncio
import random
import time
from typing import Any, Dict, Optional, Protocol

import httpx
import structlog
from pydantic import ValidationError

from portfolio_paths.config import ServiceSettings, settings
from portfolio_paths.errors import (
    MalformedResponseError,
    PreconditionSkipped,
    ServiceError,
    TransportError,
)
from portfolio_paths.models import (
    AllocationRequest,
    AllocationResponse,
    MvoConfig,
    PriceMatrix,
    SimulationParameters,
    SimulationResponse,
    StrategyKey,
)

logger = structlog.get_logger()

RETRYABLE_STATUS_CODES = {429, 502, 503, 504}


class ComputeService(Protocol):
    """The remote compute collaborators the engine depends on."""

    async def fetch_simulation(self, params: SimulationParameters) -> PriceMatrix:
        ...

    async def fetch_allocation(
        self,
        prices: PriceMatrix,
        strategy: StrategyKey,
        mvo: Optional[MvoConfig] = None,
    ) -> AllocationResponse:
        ...


class CircuitBreaker:
    """Circuit breaker for one remote service.

    Opens after ``threshold`` consecutive failures. Once ``timeout`` has
    elapsed a single trial request is let through and its outcome closes or
    reopens the circuit. A trial that never reports back is replaced after
    another ``timeout``.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, threshold: int, timeout: float):
        self.threshold = threshold
        self.timeout = timeout
        self.state = self.CLOSED
        self.failures = 0
        self.changed_at = 0.0

    def record_success(self):
        """Record a request the service answered."""
        if self.state != self.CLOSED:
            logger.info("circuit_breaker_closed", previous_state=self.state)
        self.state = self.CLOSED
        self.failures = 0

    def record_failure(self):
        """Record a request the service did not answer."""
        self.failures += 1
        if self.state == self.HALF_OPEN or (
            self.state == self.CLOSED and self.failures >= self.threshold
        ):
            self.state = self.OPEN
            self.changed_at = time.monotonic()
            logger.warning(
                "circuit_breaker_opened",
                failures=self.failures,
                threshold=self.threshold,
            )

    def can_attempt(self) -> bool:
        """Check if a request may be sent now."""
        if self.state == self.CLOSED:
            return True

        if time.monotonic() - self.changed_at < self.timeout:
            return False

        self.state = self.HALF_OPEN
        self.changed_at = time.monotonic()
        logger.info("circuit_breaker_half_open", failures=self.failures)
        return True


class _RetryableStatus(Exception):
    def __init__(self, response: httpx.Response):
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


class ComputeServiceClient:
    """HTTP client for the ``/simulate`` and ``/allocate`` endpoints.

    Transport failures and overload statuses are retried with exponential
    backoff and jitter. Everything that still fails is raised as one of the
    ``ComputeServiceError`` subclasses.
    """

    def __init__(
        self,
        service_settings: Optional[ServiceSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = service_settings or settings.service
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(
            base_url=self.settings.base_url,
            timeout=self.settings.request_timeout,
            follow_redirects=True,
        )
        self.circuit_breaker = CircuitBreaker(
            threshold=self.settings.circuit_breaker_threshold,
            timeout=self.settings.circuit_breaker_timeout,
        )

    async def __aenter__(self) -> "ComputeServiceClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self.http.aclose()

    async def fetch_simulation(self, params: SimulationParameters) -> PriceMatrix:
        """Fetch a simulated price matrix.

        Args:
            params: Simulation inputs, sent as query parameters

        Returns:
            PriceMatrix with one row per simulated path

        Raises:
            TransportError: Network failure or open circuit
            ServiceError: Non-success status or service-reported message
            MalformedResponseError: Body is not a price matrix
        """
        response = await self._request(
            "GET", self.settings.simulate_path, params=params.to_query()
        )
        payload = self._decode(response)

        try:
            body = SimulationResponse.model_validate(payload)
        except ValidationError as e:
            raise MalformedResponseError(f"Unexpected simulation body: {e}") from e

        if body.results is None:
            if body.message:
                raise ServiceError(body.message, status_code=response.status_code)
            raise MalformedResponseError("Simulation body has no 'results'")

        try:
            prices = PriceMatrix(rows=body.results)
        except ValidationError as e:
            raise MalformedResponseError(f"Ragged price matrix: {e}") from e

        logger.debug(
            "simulation_response",
            assets=prices.n_assets,
            steps=prices.n_steps,
        )
        return prices

    async def fetch_allocation(
        self,
        prices: PriceMatrix,
        strategy: StrategyKey,
        mvo: Optional[MvoConfig] = None,
    ) -> AllocationResponse:
        """Request allocation weights for a price matrix.

        Args:
            prices: Price matrix to allocate over, must be non-empty
            strategy: Allocation strategy
            mvo: Optional mean-variance tuning

        Returns:
            AllocationResponse with one weight per asset

        Raises:
            PreconditionSkipped: The matrix is empty; no request was sent
            TransportError: Network failure or open circuit
            ServiceError: Non-success status or service-reported message
            MalformedResponseError: Body is not a weight vector for these assets
        """
        if prices.is_empty:
            raise PreconditionSkipped("Allocation needs a non-empty price matrix")

        request = AllocationRequest(
            prices=prices.to_lists(),
            strategy=strategy.value,
            mvo=mvo,
        )
        response = await self._request(
            "POST",
            self.settings.allocate_path,
            json=request.model_dump(exclude_none=True),
        )
        payload = self._decode(response)

        try:
            allocation = AllocationResponse.model_validate(payload)
        except ValidationError as e:
            raise MalformedResponseError(f"Unexpected allocation body: {e}") from e

        if len(allocation.weights) != prices.n_assets:
            raise MalformedResponseError(
                f"Got {len(allocation.weights)} weights for {prices.n_assets} assets"
            )

        return allocation

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request with backoff, returning a successful response."""
        if not self.circuit_breaker.can_attempt():
            raise TransportError(
                f"Circuit breaker is open, refusing {method} {path}"
            )

        attempts = max(0, self.settings.max_retries) + 1
        for attempt in range(attempts):
            try:
                response = await self.http.request(method, path, **kwargs)
                if response.status_code in RETRYABLE_STATUS_CODES:
                    raise _RetryableStatus(response)
            except httpx.DecodingError as e:
                # The service answered, but the body cannot be decoded
                self.circuit_breaker.record_success()
                raise MalformedResponseError(
                    f"{method} {path} returned an undecodable body: {e}"
                ) from e
            except (httpx.TransportError, _RetryableStatus) as e:
                if attempt == attempts - 1:
                    self.circuit_breaker.record_failure()
                    if isinstance(e, _RetryableStatus):
                        raise self._service_error(e.response) from None
                    raise TransportError(f"{method} {path} failed: {e}") from e

                backoff = min(
                    self.settings.base_backoff_seconds * (2 ** attempt),
                    self.settings.max_backoff_seconds,
                )
                # ±25% jitter
                sleep_time = backoff + backoff * random.uniform(-0.25, 0.25)

                logger.warning(
                    "service_request_retry",
                    method=method,
                    path=path,
                    attempt=attempt + 1,
                    max_retries=self.settings.max_retries,
                    error=str(e),
                    backoff_seconds=sleep_time,
                )
                await asyncio.sleep(sleep_time)
                continue
            except httpx.RequestError as e:
                # Redirect loops and other request failures are not retried
                self.circuit_breaker.record_failure()
                raise TransportError(f"{method} {path} failed: {e}") from e

            if response.is_success:
                self.circuit_breaker.record_success()
                return response

            # Client errors are answers, not outages
            if response.status_code >= 500:
                self.circuit_breaker.record_failure()
            else:
                self.circuit_breaker.record_success()
            raise self._service_error(response)

        raise TransportError(f"{method} {path} exhausted retries")

    @staticmethod
    def _decode(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            raise MalformedResponseError(f"Response is not JSON: {e}") from e
        if not isinstance(payload, dict):
            raise MalformedResponseError("Response body must be a JSON object")
        return payload

    @staticmethod
    def _service_error(response: httpx.Response) -> ServiceError:
        message = response.text[:200] or response.reason_phrase
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            message = payload.get("error") or payload.get("message") or message
        return ServiceError(
            f"HTTP {response.status_code}: {message}",
            status_code=response.status_code,
        )
