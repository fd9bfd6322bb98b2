"""Pre-flight checks for the Build stage.

A project whose manifest does not declare the script a build step relies
on fails fast with ``MissingTestScript``.  The manifest is never edited.
"""

from __future__ import annotations

import json
from pathlib import Path


class MissingTestScript(RuntimeError):
    """A package manifest lacks a script a build step requires."""

    def __init__(self, manifest: Path, script: str, detail: str = "") -> None:
        self.manifest = manifest
        self.script = script
        message = f"{manifest} does not define a {script!r} script"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


def check_manifest_script(manifest: Path, script: str) -> None:
    """Ensure *manifest* (a ``package.json``-style file) declares *script*.

    Raises ``MissingTestScript`` when the file is missing, unreadable,
    not JSON, or has no non-empty ``scripts.<script>`` entry.
    """
    if not manifest.is_file():
        raise MissingTestScript(manifest, script, "manifest not found")
    try:
        data = json.loads(manifest.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise MissingTestScript(manifest, script, f"unreadable manifest: {exc}") from exc

    scripts = data.get("scripts") if isinstance(data, dict) else None
    if not isinstance(scripts, dict):
        raise MissingTestScript(manifest, script, "no scripts section")
    value = scripts.get(script)
    if not isinstance(value, str) or not value.strip():
        raise MissingTestScript(manifest, script)
