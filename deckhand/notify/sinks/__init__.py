"""Sink protocol for Deckhand run reports.

All sinks implement the ``BaseSink`` protocol: a ``sink_name`` property
and a ``send(message)`` method.  The reporter calls ``send`` on every
configured sink, first with the full message and, if that fails, once
more with the minimal one.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from deckhand.models.notifications import NotificationMessage


class NotificationDeliveryError(RuntimeError):
    """Raised by a sink that could not deliver a message."""


@runtime_checkable
class BaseSink(Protocol):
    """Protocol that every notification sink must implement.

    Attributes
    ----------
    sink_name : str
        A unique human-readable identifier for this sink instance
        (e.g. ``"chat_webhook"``, ``"local_file"``).
    """

    @property
    def sink_name(self) -> str:
        """Return the unique name of this sink."""
        ...

    def send(self, message: NotificationMessage) -> None:
        """Deliver *message*.

        Raises
        ------
        NotificationDeliveryError
            If the message could not be delivered.
        """
        ...
