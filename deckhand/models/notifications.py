"""Notification models — the rendered report handed to sinks."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from deckhand.models.stages import RunStatus


class DeliveryOutcome(str, Enum):
    """Overall result of delivering a run report."""

    DELIVERED = "delivered"  # every sink took the full message
    DEGRADED = "degraded"  # something got through, but not the full message everywhere
    FAILED = "failed"  # nothing got through


class MessageKind(str, Enum):
    FULL = "full"
    MINIMAL = "minimal"


class NotificationField(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    value: str
    short: bool = True


class NotificationMessage(BaseModel):
    """A sink-agnostic status report.

    Sinks decide how to render it (chat attachment, JSON file, ...).
    """

    model_config = ConfigDict(frozen=True)

    kind: MessageKind
    run_id: str
    project: str
    build_id: str
    status: RunStatus
    title: str
    text: str
    url: str | None = None
    fields: list[NotificationField] = Field(default_factory=list)
