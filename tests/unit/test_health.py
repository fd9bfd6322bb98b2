"""Tests for HealthVerifier — polling, predicates, deadlines, concurrency."""

from __future__ import annotations

import threading
import time

import httpx
import pytest

from deckhand.core.health import (
    HealthCheckUnhealthy,
    HealthVerifier,
    raise_for_unhealthy,
)
from deckhand.core.process import CancelToken, OperationCancelled
from deckhand.models.deployments import ServiceDeployment, ServiceState
from deckhand.models.health import HealthCheckSpec, HealthOutcome, HealthResult

from conftest import health_transport


def _check(service: str = "api", **overrides) -> HealthCheckSpec:
    values = {
        "service": service,
        "url": f"http://{service}.test/health",
        "poll_interval": 0.01,
        "max_wait": 0.3,
        "request_timeout": 0.1,
    }
    values.update(overrides)
    return HealthCheckSpec(**values)


class TestHealthCheckSpec:
    def test_default_accepts_any_2xx(self):
        spec = _check()
        assert spec.accepts(200)
        assert spec.accepts(204)
        assert not spec.accepts(301)
        assert not spec.accepts(503)

    def test_explicit_status_list(self):
        spec = _check(expected_status=[200, 401])
        assert spec.accepts(401)
        assert not spec.accepts(204)

    def test_body_predicate(self):
        spec = _check(body_contains='"status":"up"')
        assert spec.accepts(200, '{"status":"up"}')
        assert not spec.accepts(200, '{"status":"down"}')

    def test_poll_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            _check(poll_interval=0)


class TestHealthVerifier:
    def test_healthy_first_attempt(self):
        verifier = HealthVerifier(settle_delay=0, transport=health_transport({"api.test": 200}))
        results = verifier.verify([_check()])
        result = results["api"]
        assert result.healthy
        assert result.attempts == 1
        assert result.last_status_code == 200

    def test_becomes_healthy_after_retries(self):
        calls = {"n": 0}

        def flaky(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(503 if calls["n"] < 3 else 200)

        verifier = HealthVerifier(settle_delay=0, transport=health_transport({"api.test": flaky}))
        result = verifier.verify([_check()])["api"]
        assert result.healthy
        assert result.attempts == 3

    def test_unhealthy_after_max_wait(self):
        verifier = HealthVerifier(settle_delay=0, transport=health_transport({"api.test": 500}))
        result = verifier.verify([_check(max_wait=0.1)])["api"]
        assert result.outcome == HealthOutcome.UNHEALTHY
        assert result.attempts >= 1
        assert result.last_status_code == 500
        assert "unexpected response 500" in result.last_error

    def test_unreachable_endpoint(self):
        verifier = HealthVerifier(settle_delay=0, transport=health_transport({}))
        result = verifier.verify([_check(max_wait=0.1)])["api"]
        assert not result.healthy
        assert result.last_status_code is None
        assert "ConnectError" in result.last_error

    def test_zero_max_wait_never_polls(self):
        seen = []

        def record(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        verifier = HealthVerifier(settle_delay=0, transport=health_transport({"api.test": record}))
        result = verifier.verify([_check(max_wait=0)])["api"]
        assert not result.healthy
        assert result.attempts == 0
        assert seen == []

    def test_zero_max_wait_unreachable_returns_promptly(self):
        verifier = HealthVerifier(settle_delay=0.05, transport=health_transport({}))
        started = time.monotonic()
        result = verifier.verify([_check(max_wait=0)])["api"]
        assert result.outcome == HealthOutcome.UNHEALTHY
        assert result.last_error == "max wait elapsed before first poll"
        assert time.monotonic() - started < 2

    def test_checks_are_independent(self):
        verifier = HealthVerifier(
            settle_delay=0, transport=health_transport({"api.test": 200, "web.test": 503})
        )
        results = verifier.verify([_check("api"), _check("web", max_wait=0.1)])
        assert results["api"].healthy
        assert not results["web"].healthy

    def test_checks_poll_concurrently(self):
        in_flight = 0
        peak = 0
        lock = threading.Lock()

        def slow(request: httpx.Request) -> httpx.Response:
            nonlocal in_flight, peak
            with lock:
                in_flight += 1
                peak = max(peak, in_flight)
            time.sleep(0.05)
            with lock:
                in_flight -= 1
            return httpx.Response(200)

        routes = {f"svc{i}.test": slow for i in range(4)}
        verifier = HealthVerifier(settle_delay=0, transport=health_transport(routes))
        verifier.verify([_check(f"svc{i}") for i in range(4)])
        assert peak > 1

    def test_empty_spec_list(self):
        assert HealthVerifier(settle_delay=5).verify([]) == {}

    def test_cancel_during_settle(self):
        token = CancelToken()
        threading.Timer(0.05, token.cancel).start()
        verifier = HealthVerifier(settle_delay=30, transport=health_transport({"api.test": 200}))
        with pytest.raises(OperationCancelled):
            verifier.verify([_check()], cancel=token)

    def test_deadline_during_polling(self):
        verifier = HealthVerifier(settle_delay=0, transport=health_transport({"api.test": 503}))
        started = time.monotonic()
        with pytest.raises(OperationCancelled) as exc_info:
            verifier.verify([_check(max_wait=30)], cancel=CancelToken(0.2))
        assert exc_info.value.reason == "timeout"
        assert time.monotonic() - started < 5


class TestReconcile:
    def test_states_follow_results(self):
        services = [
            ServiceDeployment(service="api", artifact_ref="a:1", state=ServiceState.STARTING),
            ServiceDeployment(service="web", artifact_ref="w:1", state=ServiceState.STARTING),
            ServiceDeployment(service="cron", artifact_ref="c:1", state=ServiceState.STARTING),
        ]
        results = {
            "api": HealthResult(service="api", outcome=HealthOutcome.HEALTHY, attempts=1),
            "web": HealthResult(service="web", outcome=HealthOutcome.UNHEALTHY, attempts=4),
        }
        updated = HealthVerifier.reconcile(services, results)
        assert [s.state for s in updated] == [
            ServiceState.RUNNING, ServiceState.UNHEALTHY, ServiceState.STARTING,
        ]

    def test_raise_for_unhealthy(self):
        results = {
            "api": HealthResult(service="api", outcome=HealthOutcome.HEALTHY),
            "web": HealthResult(service="web", outcome=HealthOutcome.UNHEALTHY),
        }
        with pytest.raises(HealthCheckUnhealthy, match="web"):
            raise_for_unhealthy(results)
        raise_for_unhealthy({"api": results["api"]})
