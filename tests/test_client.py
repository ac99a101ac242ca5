"""Tests for the compute service HTTP client."""

import asyncio
import json

import httpx
import pytest

from portfolio_paths import client as client_module
from portfolio_paths.client import CircuitBreaker, ComputeServiceClient
from portfolio_paths.config import EngineSettings, ServiceSettings
from portfolio_paths.engine import PortfolioEngine
from portfolio_paths.errors import (
    MalformedResponseError,
    PreconditionSkipped,
    ServiceError,
    TransportError,
)
from portfolio_paths.models import MvoConfig, PriceMatrix, SimulationParameters, StrategyKey

BASE_URL = "http://service.test"


def _client(handler, **overrides) -> ComputeServiceClient:
    options = {
        "base_url": BASE_URL,
        "max_retries": 3,
        "base_backoff_seconds": 0.0,
        "max_backoff_seconds": 0.0,
    }
    options.update(overrides)
    http = httpx.AsyncClient(
        base_url=BASE_URL, transport=httpx.MockTransport(handler), follow_redirects=True
    )
    return ComputeServiceClient(ServiceSettings(**options), http_client=http)


def _run(client: ComputeServiceClient, call):
    async def runner():
        async with client:
            return await call(client)

    return asyncio.run(runner())


def test_fetch_simulation_sends_query_and_parses_matrix():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200, json={"message": "ok", "results": [[50.0, 51.0, 52.0], [50.0, 49.0, 48.5]]}
        )

    prices = _run(_client(handler), lambda c: c.fetch_simulation(SimulationParameters()))

    assert prices.n_assets == 2
    assert prices.n_steps == 3
    request = seen[0]
    assert request.method == "GET"
    assert request.url.path == "/simulate"
    assert request.url.params["samples"] == "10"
    assert request.url.params["size"] == "30"
    assert float(request.url.params["mu"]) == pytest.approx(0.005)
    assert float(request.url.params["sigma"]) == pytest.approx(0.015)
    assert float(request.url.params["starting_value"]) == 50.0
    assert "dt" not in request.url.params


def test_fetch_simulation_message_without_results_is_service_error():
    def handler(request):
        return httpx.Response(200, json={"message": "size too large"})

    with pytest.raises(ServiceError, match="size too large"):
        _run(_client(handler), lambda c: c.fetch_simulation(SimulationParameters()))


def test_fetch_simulation_malformed_bodies():
    """Non-JSON and ragged matrices are malformed responses."""
    def not_json(request):
        return httpx.Response(200, text="<html>oops</html>")

    def ragged(request):
        return httpx.Response(200, json={"results": [[1.0, 2.0], [1.0]]})

    with pytest.raises(MalformedResponseError):
        _run(_client(not_json), lambda c: c.fetch_simulation(SimulationParameters()))
    with pytest.raises(MalformedResponseError):
        _run(_client(ragged), lambda c: c.fetch_simulation(SimulationParameters()))


def test_client_error_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400, json={"error": "Missing 'prices' array"})

    with pytest.raises(ServiceError, match="Missing 'prices' array") as exc_info:
        _run(_client(handler), lambda c: c.fetch_simulation(SimulationParameters()))

    assert exc_info.value.status_code == 400
    assert len(calls) == 1


def test_overload_status_is_retried_until_success():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"results": [[1.0, 2.0]]})

    prices = _run(_client(handler), lambda c: c.fetch_simulation(SimulationParameters()))

    assert prices.n_assets == 1
    assert len(calls) == 3


def test_transport_failure_raises_after_retries():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError, match="connection refused"):
        _run(_client(handler, max_retries=2), lambda c: c.fetch_simulation(SimulationParameters()))

    # one try plus two retries
    assert len(calls) == 3


def test_circuit_breaker_refuses_calls_after_failures():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("down", request=request)

    client = _client(handler, max_retries=0, circuit_breaker_threshold=1, circuit_breaker_timeout=60.0)

    async def twice(c):
        with pytest.raises(TransportError):
            await c.fetch_simulation(SimulationParameters())
        with pytest.raises(TransportError, match="Circuit breaker is open"):
            await c.fetch_simulation(SimulationParameters())

    _run(client, twice)

    assert len(calls) == 1


def test_fetch_allocation_posts_prices_and_strategy():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        assert request.method == "POST"
        assert request.url.path == "/allocate"
        return httpx.Response(200, json={"strategy": "hrp", "weights": [0.4, 0.6], "sum": 1.0})

    prices = PriceMatrix(rows=[[1.0, 2.0], [3.0, 4.0]])
    allocation = _run(
        _client(handler),
        lambda c: c.fetch_allocation(prices, StrategyKey.HRP, MvoConfig(shrinkage=0.1)),
    )

    assert allocation.weights == [0.4, 0.6]
    assert allocation.weight_sum == 1.0
    assert bodies == [
        {"prices": [[1.0, 2.0], [3.0, 4.0]], "strategy": "hrp", "mvo": {"shrinkage": 0.1}}
    ]


def test_fetch_allocation_empty_matrix_sends_nothing():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    with pytest.raises(PreconditionSkipped):
        _run(_client(handler), lambda c: c.fetch_allocation(PriceMatrix(), StrategyKey.EW))
    with pytest.raises(PreconditionSkipped):
        _run(_client(handler), lambda c: c.fetch_allocation(PriceMatrix(rows=[[]]), StrategyKey.EW))

    assert calls == []


def test_fetch_allocation_weight_count_mismatch_is_malformed():
    def handler(request):
        return httpx.Response(200, json={"strategy": "ew", "weights": [1.0], "sum": 1.0})

    prices = PriceMatrix(rows=[[1.0, 2.0], [3.0, 4.0]])

    with pytest.raises(MalformedResponseError, match="1 weights for 2 assets"):
        _run(_client(handler), lambda c: c.fetch_allocation(prices, StrategyKey.EW))


def test_fetch_allocation_missing_fields_is_malformed():
    def handler(request):
        return httpx.Response(200, json={"strategy": "ew"})

    prices = PriceMatrix(rows=[[1.0, 2.0]])

    with pytest.raises(MalformedResponseError):
        _run(_client(handler), lambda c: c.fetch_allocation(prices, StrategyKey.EW))


def test_undecodable_body_is_malformed_and_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(
            200, headers={"content-encoding": "gzip"}, content=b"not gzip at all"
        )

    prices = PriceMatrix(rows=[[1.0, 2.0]])

    with pytest.raises(MalformedResponseError, match="undecodable body"):
        _run(_client(handler), lambda c: c.fetch_allocation(prices, StrategyKey.EW))

    assert len(calls) == 1


def test_redirect_loop_is_transport_error():
    def handler(request):
        return httpx.Response(302, headers={"location": "/simulate"})

    with pytest.raises(TransportError, match="redirect"):
        _run(_client(handler), lambda c: c.fetch_simulation(SimulationParameters()))


def test_engine_contains_undecodable_allocation_body():
    """A corrupt allocation body is logged by the engine, not raised."""
    def handler(request):
        if request.url.path == "/simulate":
            return httpx.Response(200, json={"results": [[50.0, 51.0], [50.0, 49.0]]})
        return httpx.Response(
            200, headers={"content-encoding": "gzip"}, content=b"not gzip at all"
        )

    async def scenario(client):
        engine = PortfolioEngine(client, EngineSettings(color_seed=1))
        engine.refresh()
        await engine.wait_idle()
        path = await engine.allocate("ew")
        return engine, path

    engine, path = _run(_client(handler), scenario)

    assert engine.store.prices is not None
    assert path is None
    assert len(engine.registry) == 0


def test_circuit_breaker_half_open_lets_one_trial_through(monkeypatch):
    clock = [100.0]
    monkeypatch.setattr(client_module.time, "monotonic", lambda: clock[0])
    breaker = CircuitBreaker(threshold=2, timeout=30.0)

    breaker.record_failure()
    assert breaker.can_attempt()
    breaker.record_failure()
    assert breaker.state == CircuitBreaker.OPEN
    assert not breaker.can_attempt()

    clock[0] += 31.0
    assert breaker.can_attempt()
    assert breaker.state == CircuitBreaker.HALF_OPEN
    # only the trial request goes through
    assert not breaker.can_attempt()

    breaker.record_failure()
    assert breaker.state == CircuitBreaker.OPEN
    assert not breaker.can_attempt()

    clock[0] += 31.0
    assert breaker.can_attempt()
    breaker.record_success()
    assert breaker.state == CircuitBreaker.CLOSED
    assert breaker.can_attempt()
    assert breaker.can_attempt()


def test_circuit_breaker_replaces_trial_that_never_reports(monkeypatch):
    clock = [0.0]
    monkeypatch.setattr(client_module.time, "monotonic", lambda: clock[0])
    breaker = CircuitBreaker(threshold=1, timeout=10.0)

    breaker.record_failure()
    clock[0] += 11.0
    assert breaker.can_attempt()
    assert not breaker.can_attempt()

    clock[0] += 11.0
    assert breaker.can_attempt()
