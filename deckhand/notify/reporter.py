"""NotificationReporter — delivers the run report to every sink.

Delivery is two-tier per sink: the full structured message first, then
once with the minimal fallback.  If both fail the error is logged and
swallowed.  ``report`` never raises: a notification problem must never
fail the pipeline.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import httpx

from deckhand.config import DeckhandSettings
from deckhand.models.notifications import DeliveryOutcome, MessageKind, NotificationMessage
from deckhand.models.run import PipelineRun
from deckhand.notify.formatting import build_full_message, build_minimal_message
from deckhand.notify.sinks import BaseSink
from deckhand.notify.sinks.local_file import LocalFileSink
from deckhand.notify.sinks.webhook import ChatWebhookSink

logger = logging.getLogger(__name__)


class NotificationReporter:
    """Sends run reports to the configured sinks.

    Usage
    -----
    >>> reporter = NotificationReporter()
    >>> reporter.register_sink(ChatWebhookSink(url, channel="#deploys"))
    >>> reporter.report(run)
    """

    def __init__(self, sinks: Sequence[BaseSink] | None = None) -> None:
        self._sinks: list[BaseSink] = []
        for sink in sinks or []:
            self.register_sink(sink)

    @classmethod
    def from_settings(
        cls,
        settings: DeckhandSettings,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> NotificationReporter:
        """Build a reporter with the sinks enabled in *settings*."""
        reporter = cls()
        if settings.webhook_url:
            reporter.register_sink(
                ChatWebhookSink(
                    settings.webhook_url,
                    channel=settings.notification_channel,
                    timeout=settings.webhook_timeout_seconds,
                    transport=transport,
                )
            )
        if settings.archive_reports:
            reporter.register_sink(LocalFileSink(settings.state_dir / "reports"))
        return reporter

    def register_sink(self, sink: BaseSink) -> None:
        """Register a sink.  Duplicate registration is ignored."""
        if sink not in self._sinks:
            self._sinks.append(sink)
            logger.debug("Registered sink: %s", sink.sink_name)

    @property
    def registered_sinks(self) -> list[BaseSink]:
        return list(self._sinks)

    def report(self, run: PipelineRun) -> DeliveryOutcome:
        """Deliver the report for *run* and return the overall outcome.  Never raises."""
        if not self._sinks:
            logger.warning("No notification sinks configured; report for %s dropped", run.run_id)
            return DeliveryOutcome.FAILED

        try:
            attempts = [build_full_message(run), build_minimal_message(run)]
        except Exception:  # noqa: BLE001
            logger.exception("Could not build report for run %s", run.run_id)
            return DeliveryOutcome.FAILED

        delivered = [self._deliver(sink, attempts, run.run_id) for sink in self._sinks]

        if all(kind == MessageKind.FULL for kind in delivered):
            outcome = DeliveryOutcome.DELIVERED
        elif any(kind is not None for kind in delivered):
            outcome = DeliveryOutcome.DEGRADED
        else:
            outcome = DeliveryOutcome.FAILED
        logger.info("Report for run %s: %s", run.run_id, outcome.value)
        return outcome

    @staticmethod
    def _deliver(
        sink: BaseSink, attempts: list[NotificationMessage], run_id: str
    ) -> MessageKind | None:
        """Try each message in turn; return the kind that got through, if any."""
        for message in attempts:
            try:
                sink.send(message)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Sink %s failed %s delivery for run %s: %s",
                    sink.sink_name, message.kind.value, run_id, exc,
                )
                continue
            return message.kind
        logger.error("All delivery attempts to %s failed for run %s", sink.sink_name, run_id)
        return None
