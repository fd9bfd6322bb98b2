"""Run reporting: message formatting, the reporter and its delivery sinks."""

from deckhand.notify.reporter import NotificationReporter

__all__ = ["NotificationReporter"]
