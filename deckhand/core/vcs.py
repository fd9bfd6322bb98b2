"""Git metadata for run reports.

Metadata is best effort: any field git cannot provide is left ``None``
and the report simply omits it.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from deckhand.core.process import (
    CancelToken,
    ProcessLaunchError,
    ProcessRunner,
    ProcessTimeout,
)
from deckhand.models.run import CommitInfo

logger = logging.getLogger(__name__)

# CI servers usually check out a detached HEAD and expose the branch here.
_BRANCH_ENV_VARS = ("GIT_BRANCH", "BRANCH_NAME", "CI_COMMIT_REF_NAME")


class GitMetadataCollector:
    """Reads branch, commit, author and subject of HEAD via the git CLI."""

    def __init__(
        self,
        runner: ProcessRunner,
        *,
        git: str = "git",
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._runner = runner
        self._git = git
        self._environ = environ if environ is not None else os.environ

    def collect(self, repo_dir: Path, cancel: CancelToken | None = None) -> CommitInfo:
        commit = self._git_output(repo_dir, ["rev-parse", "HEAD"], cancel)
        if commit is None:
            logger.info("No git metadata available in %s", repo_dir)
            return CommitInfo(branch=self._branch_from_env())

        short = self._git_output(repo_dir, ["rev-parse", "--short", "HEAD"], cancel)
        branch = self._git_output(repo_dir, ["rev-parse", "--abbrev-ref", "HEAD"], cancel)
        if branch in (None, "HEAD"):
            branch = self._branch_from_env()

        author = message = None
        log = self._git_output(repo_dir, ["log", "-1", "--format=%an%x1f%s"], cancel)
        if log and "\x1f" in log:
            author, message = log.split("\x1f", 1)

        return CommitInfo(
            branch=branch,
            commit=commit,
            short_commit=short or commit[:7],
            author=author or None,
            message=message or None,
        )

    def _branch_from_env(self) -> str | None:
        for name in _BRANCH_ENV_VARS:
            value = self._environ.get(name)
            if value:
                return value.removeprefix("origin/")
        return None

    def _git_output(
        self, repo_dir: Path, args: list[str], cancel: CancelToken | None
    ) -> str | None:
        try:
            result = self._runner.run(
                [self._git, "-C", str(repo_dir), *args], timeout=30.0, cancel=cancel
            )
        except (ProcessLaunchError, ProcessTimeout) as exc:
            logger.debug("git %s failed: %s", " ".join(args), exc)
            return None
        if not result.ok:
            return None
        return result.stdout.strip() or None
