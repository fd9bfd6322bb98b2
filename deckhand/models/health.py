"""Health check models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class HealthOutcome(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthCheckSpec(BaseModel):
    """How to decide that one service is healthy.

    An empty ``expected_status`` accepts any 2xx response.  Durations are
    in seconds.
    """

    model_config = ConfigDict(frozen=True)

    service: str
    url: str
    expected_status: list[int] = Field(default_factory=list)
    body_contains: str | None = None
    poll_interval: float = Field(default=5.0, gt=0)
    max_wait: float = Field(default=60.0, ge=0)
    request_timeout: float = Field(default=5.0, gt=0)

    def accepts(self, status_code: int, body: str = "") -> bool:
        """Return True when a response satisfies this check's predicate."""
        if self.expected_status:
            status_ok = status_code in self.expected_status
        else:
            status_ok = 200 <= status_code < 300
        if not status_ok:
            return False
        if self.body_contains is not None:
            return self.body_contains in body
        return True


class HealthResult(BaseModel):
    """Result of polling one service."""

    model_config = ConfigDict(frozen=True)

    service: str
    outcome: HealthOutcome
    attempts: int = 0
    last_status_code: int | None = None
    last_error: str | None = None
    elapsed_seconds: float = 0.0

    @property
    def healthy(self) -> bool:
        return self.outcome == HealthOutcome.HEALTHY
