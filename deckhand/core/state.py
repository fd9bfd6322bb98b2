"""Small on-disk state: the build counter and the deployment history.

Both live as JSON files under the state directory and are replaced
atomically on every write.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def _read_json(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        logger.warning("Ignoring corrupt state file %s", path)
        return {}
    return data if isinstance(data, dict) else {}


def _write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, sort_keys=True, indent=2)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class BuildCounter:
    """Monotonically increasing build identifier.

    CI servers supply their own build number; it is used as-is and the
    counter advances past it so that later local runs never reuse it.
    """

    FILENAME = "build_counter.json"

    def __init__(self, state_dir: Path) -> None:
        self._path = Path(state_dir) / self.FILENAME
        self._lock = threading.Lock()

    @property
    def last(self) -> int:
        return int(_read_json(self._path).get("last", 0))

    def next(self, explicit: int | None = None) -> int:
        with self._lock:
            last = self.last
            if explicit is None:
                build_id = last + 1
            else:
                build_id = explicit
                if explicit <= last:
                    logger.warning(
                        "Build id %d does not advance the counter (last %d)", explicit, last
                    )
            _write_json_atomic(self._path, {"last": max(last, build_id)})
            return build_id


class DeploymentHistory:
    """Last successfully verified tag per project, used for rollback."""

    FILENAME = "deployments.json"

    def __init__(self, state_dir: Path) -> None:
        self._path = Path(state_dir) / self.FILENAME
        self._lock = threading.Lock()

    def last_successful(self, project: str) -> str | None:
        entry = _read_json(self._path).get(project)
        if isinstance(entry, dict):
            return entry.get("tag")
        return None

    def record_success(self, project: str, tag: str) -> None:
        with self._lock:
            data = _read_json(self._path)
            data[project] = {
                "tag": tag,
                "recorded_at": datetime.now(timezone.utc).isoformat(),
            }
            _write_json_atomic(self._path, data)
        logger.info("Recorded %s tag %s as last good deployment", project, tag)
