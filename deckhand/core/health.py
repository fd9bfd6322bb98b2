"""HealthVerifier — polls service health endpoints after a rollout.

Every check waits out a fixed settling delay, then polls its endpoint
every ``poll_interval`` seconds until the predicate matches or
``max_wait`` elapses.  Checks run concurrently and independently.
An unhealthy service is a warning, not an error: the coordinator
degrades the run instead of failing it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor

import httpx

from deckhand.core.process import CancelToken, OperationCancelled
from deckhand.models.deployments import ServiceDeployment, ServiceState
from deckhand.models.health import HealthCheckSpec, HealthOutcome, HealthResult

logger = logging.getLogger(__name__)

MAX_POLL_WORKERS = 16


class HealthCheckUnhealthy(RuntimeError):
    """One or more services never became healthy."""

    def __init__(self, results: Sequence[HealthResult]) -> None:
        self.results = list(results)
        names = ", ".join(r.service for r in self.results)
        super().__init__(f"Unhealthy service(s): {names}")


def raise_for_unhealthy(results: Mapping[str, HealthResult]) -> None:
    """Raise ``HealthCheckUnhealthy`` if any result is unhealthy."""
    unhealthy = [r for r in results.values() if not r.healthy]
    if unhealthy:
        raise HealthCheckUnhealthy(unhealthy)


class HealthVerifier:
    """Concurrent HTTP health polling.

    Parameters
    ----------
    settle_delay:
        Seconds to wait before the first poll, for process startup.
    transport:
        Optional httpx transport (``httpx.MockTransport`` in tests).
    clock:
        Monotonic clock used for per-check deadlines.
    """

    def __init__(
        self,
        *,
        settle_delay: float = 10.0,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settle_delay = settle_delay
        self._transport = transport
        self._clock = clock

    def verify(
        self,
        specs: Sequence[HealthCheckSpec],
        cancel: CancelToken | None = None,
    ) -> dict[str, HealthResult]:
        """Poll every spec and return ``{service: HealthResult}``.

        Raises ``OperationCancelled`` if *cancel* fires; open poll loops
        stop at their next wait.
        """
        if not specs:
            return {}
        token = cancel or CancelToken()

        if self._settle_delay > 0:
            logger.info("Waiting %.1fs for services to settle", self._settle_delay)
            if token.wait(self._settle_delay):
                raise OperationCancelled(token.reason, "health settling delay")

        slots: list[HealthResult | None] = [None] * len(specs)

        def _work(index: int, spec: HealthCheckSpec) -> None:
            slots[index] = self._poll(spec, token)

        workers = min(len(specs), MAX_POLL_WORKERS)
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="deckhand-health"
        ) as pool:
            futures = [pool.submit(_work, i, spec) for i, spec in enumerate(specs)]
            for future in futures:
                future.result()

        token.raise_if_cancelled("health verification")
        return {r.service: r for r in slots if r is not None}

    @staticmethod
    def reconcile(
        services: Sequence[ServiceDeployment],
        results: Mapping[str, HealthResult],
    ) -> list[ServiceDeployment]:
        """Move checked services to ``running`` or ``unhealthy``.

        Services without a health check keep their current state.
        """
        updated: list[ServiceDeployment] = []
        for service in services:
            result = results.get(service.service)
            if result is None:
                updated.append(service)
            elif result.healthy:
                updated.append(service.with_state(ServiceState.RUNNING))
            else:
                updated.append(service.with_state(ServiceState.UNHEALTHY))
        return updated

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _poll(self, spec: HealthCheckSpec, token: CancelToken) -> HealthResult:
        started = self._clock()
        deadline = started + spec.max_wait
        attempts = 0
        last_status: int | None = None
        last_error: str | None = None

        with httpx.Client(transport=self._transport, follow_redirects=True) as client:
            while True:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    break
                if token.cancelled:
                    last_error = f"cancelled ({token.reason})"
                    break

                attempts += 1
                request_timeout = token.bound(min(spec.request_timeout, remaining))
                try:
                    response = client.get(spec.url, timeout=max(request_timeout or 0.0, 0.001))
                except httpx.HTTPError as exc:
                    last_error = f"{type(exc).__name__}: {exc}"
                else:
                    last_status = response.status_code
                    if spec.accepts(response.status_code, response.text):
                        elapsed = self._clock() - started
                        logger.info(
                            "%s healthy after %d attempt(s) (%.1fs)",
                            spec.service, attempts, elapsed,
                        )
                        return HealthResult(
                            service=spec.service,
                            outcome=HealthOutcome.HEALTHY,
                            attempts=attempts,
                            last_status_code=last_status,
                            elapsed_seconds=elapsed,
                        )
                    last_error = f"unexpected response {response.status_code}"

                pause = min(spec.poll_interval, deadline - self._clock())
                if pause <= 0:
                    break
                if token.wait(pause):
                    last_error = f"cancelled ({token.reason})"
                    break

        elapsed = self._clock() - started
        if attempts == 0 and last_error is None:
            last_error = "max wait elapsed before first poll"
        logger.warning(
            "%s unhealthy after %d attempt(s) (%.1fs): %s",
            spec.service, attempts, elapsed, last_error,
        )
        return HealthResult(
            service=spec.service,
            outcome=HealthOutcome.UNHEALTHY,
            attempts=attempts,
            last_status_code=last_status,
            last_error=last_error,
            elapsed_seconds=elapsed,
        )
