"""Local file sink — archives run reports as JSON files.

Layout: {base_path}/{run_id}/{kind}.json
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from deckhand.models.notifications import NotificationMessage
from deckhand.notify.sinks import NotificationDeliveryError

logger = logging.getLogger(__name__)


class LocalFileSink:
    """Writes messages to local JSON files.

    Parameters
    ----------
    base_path:
        Root directory for report files.  Defaults to ``.deckhand/reports``.
    """

    def __init__(self, base_path: Path | str | None = None) -> None:
        self._base = Path(base_path) if base_path else Path(".deckhand/reports")

    @property
    def sink_name(self) -> str:
        return "local_file"

    def send(self, message: NotificationMessage) -> None:
        target_dir = self._base / message.run_id
        target_file = target_dir / f"{message.kind.value}.json"
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            target_file.write_text(message.model_dump_json(indent=2), encoding="utf-8")
        except OSError as exc:
            raise NotificationDeliveryError(f"Cannot write {target_file}: {exc}") from exc
        logger.debug("LocalFileSink: wrote %s", target_file)

    def list_reports(self, run_id: str | None = None) -> list[Path]:
        """List report files, optionally for a single run."""
        root = self._base / run_id if run_id else self._base
        if not root.exists():
            return []
        return sorted(root.rglob("*.json"))

    def read_report(self, path: Path) -> dict:
        """Read and parse a single report file."""
        return json.loads(path.read_text(encoding="utf-8"))
