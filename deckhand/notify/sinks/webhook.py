"""Chat webhook sink — posts run reports to an incoming-webhook URL.

The payload uses the widely supported incoming-webhook shape (``text``
plus ``attachments`` with coloured fields) accepted by Slack, Mattermost
and Rocket.Chat.  The webhook URL embeds a credential and is never logged.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from deckhand.models.notifications import MessageKind, NotificationMessage
from deckhand.models.stages import RunStatus
from deckhand.notify.sinks import NotificationDeliveryError

logger = logging.getLogger(__name__)

_STATUS_COLORS: dict[RunStatus, str] = {
    RunStatus.SUCCESS: "good",
    RunStatus.PARTIAL_FAILURE: "warning",
    RunStatus.FAILED: "danger",
    RunStatus.RUNNING: "#439FE0",
}


class ChatWebhookSink:
    """Delivers messages to a chat channel over HTTP.

    Parameters
    ----------
    webhook_url:
        Incoming-webhook URL.
    channel:
        Channel override, e.g. ``"#deployments"``.  Omitted when empty.
    username:
        Display name for the posting bot.
    timeout:
        Request timeout in seconds.
    transport:
        Optional httpx transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        webhook_url: str,
        *,
        channel: str = "",
        username: str = "deckhand",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._url = webhook_url
        self._channel = channel
        self._username = username
        self._timeout = timeout
        self._transport = transport

    @property
    def sink_name(self) -> str:
        return "chat_webhook"

    def send(self, message: NotificationMessage) -> None:
        payload = self.build_payload(message)
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(self._url, json=payload)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise NotificationDeliveryError(
                f"Webhook rejected {message.kind.value} message: "
                f"HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise NotificationDeliveryError(
                f"Webhook unreachable ({type(exc).__name__})"
            ) from exc
        logger.debug("Delivered %s message for run %s", message.kind.value, message.run_id)

    def build_payload(self, message: NotificationMessage) -> dict[str, Any]:
        """Return the JSON body for *message*."""
        payload: dict[str, Any] = {"username": self._username}
        if self._channel:
            payload["channel"] = self._channel

        if message.kind == MessageKind.MINIMAL:
            payload["text"] = message.text
            return payload

        attachment: dict[str, Any] = {
            "color": _STATUS_COLORS.get(message.status, "#439FE0"),
            "title": message.title,
            "text": message.text,
            "fields": [
                {"title": f.label, "value": f.value, "short": f.short}
                for f in message.fields
            ],
        }
        if message.url:
            attachment["title_link"] = message.url
        payload["text"] = message.title
        payload["attachments"] = [attachment]
        return payload
