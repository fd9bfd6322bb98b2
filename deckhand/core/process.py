"""External process execution with timeouts and cooperative cancellation.

Every tool Deckhand drives (git, package managers, the image builder, the
compose orchestrator) is invoked through ``ProcessRunner.run``.  The
runner never raises on a nonzero exit code (callers inspect
``ProcessResult.exit_code``), but it does raise when the tool cannot be
started, when it outlives its timeout, or when the run's ``CancelToken``
fires.  In the last two cases the child is killed and reaped before the
exception leaves ``run``.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import threading
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from pathlib import Path

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

# How often a running child is checked for timeout / cancellation.
_POLL_SECONDS = 0.1

# How long a killed child gets to exit before we stop waiting on it.
KILL_GRACE_SECONDS = 5.0

REDACTED = "********"


class ProcessLaunchError(RuntimeError):
    """Raised when an executable cannot be started."""


class ProcessTimeout(RuntimeError):
    """Raised when a process exceeds its timeout.  The process has been killed."""

    def __init__(self, command: Sequence[str], timeout: float) -> None:
        self.command = list(command)
        self.timeout = timeout
        super().__init__(
            f"{shlex.join(self.command)} timed out after {timeout:.1f}s"
        )


class OperationCancelled(RuntimeError):
    """Raised when the run's cancel token fires during a blocking operation."""

    def __init__(self, reason: str, operation: str = "") -> None:
        self.reason = reason
        self.operation = operation
        where = f" during {operation}" if operation else ""
        super().__init__(f"Operation cancelled ({reason}){where}")


class CancelToken:
    """Single cancellation source shared by every blocking call in a run.

    Fires either when ``cancel()`` is called (e.g. on SIGTERM) or when the
    global deadline passes.

    Parameters
    ----------
    deadline_seconds:
        Budget from construction time.  ``None`` means no deadline.
    clock:
        Monotonic clock; injectable for tests.
    """

    def __init__(
        self,
        deadline_seconds: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._deadline = None if deadline_seconds is None else clock() + deadline_seconds
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.expired

    @property
    def reason(self) -> str:
        return "timeout" if self.expired else "cancelled"

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or ``None`` without a deadline."""
        if self._deadline is None:
            return None
        return max(self._deadline - self._clock(), 0.0)

    def bound(self, timeout: float | None) -> float | None:
        """Clip *timeout* to the remaining global budget."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        if timeout is None:
            return remaining
        return min(timeout, remaining)

    def wait(self, seconds: float) -> bool:
        """Sleep up to *seconds*, waking early on cancellation.

        Returns True if the token fired.
        """
        bounded = self.bound(seconds)
        if bounded and bounded > 0:
            self._event.wait(bounded)
        return self.cancelled

    def raise_if_cancelled(self, operation: str = "") -> None:
        if self.cancelled:
            raise OperationCancelled(self.reason, operation)


class ProcessResult(BaseModel):
    """Captured outcome of a finished process."""

    model_config = ConfigDict(frozen=True)

    command: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def output_tail(self, lines: int = 20) -> str:
        """Last *lines* of combined stderr/stdout, for error messages."""
        text = (self.stderr.strip() or self.stdout.strip())
        return "\n".join(text.splitlines()[-lines:])


def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace every occurrence of each secret value in *text*."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


class ProcessRunner:
    """Runs external commands and captures their output.

    Parameters
    ----------
    poll_interval:
        Granularity of timeout and cancellation checks, in seconds.
    """

    def __init__(self, poll_interval: float = _POLL_SECONDS) -> None:
        self._poll_interval = poll_interval

    def run(
        self,
        command: Sequence[str | Path],
        working_dir: Path | str | None = None,
        env_overrides: Mapping[str, str] | None = None,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> ProcessResult:
        """Run *command* to completion and return its result.

        Raises
        ------
        ProcessLaunchError
            The executable could not be started.
        ProcessTimeout
            The process exceeded *timeout*; it has been killed.
        OperationCancelled
            *cancel* fired while the process ran; it has been killed.
        """
        argv = [str(part) for part in command]
        if not argv:
            raise ProcessLaunchError("Empty command")
        operation = shlex.join(argv)
        if cancel is not None:
            cancel.raise_if_cancelled(operation)

        env = None
        if env_overrides:
            env = {**os.environ, **env_overrides}
            # Keys only: values may be secrets.
            logger.debug("Environment overrides for %s: %s", argv[0], sorted(env_overrides))
        logger.info("Running: %s", operation)

        started = time.monotonic()
        try:
            proc = subprocess.Popen(
                argv,
                cwd=str(working_dir) if working_dir is not None else None,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except OSError as exc:
            raise ProcessLaunchError(f"Cannot start {argv[0]!r}: {exc}") from exc

        with proc:
            try:
                stdout, stderr = self._wait(proc, argv, started, timeout, cancel)
            finally:
                # Reached with a live child only on an unexpected exit path
                # (e.g. KeyboardInterrupt); never leave it running.
                if proc.poll() is None:
                    self._kill(proc)

        duration = time.monotonic() - started
        logger.debug(
            "%s exited %d in %.2fs", argv[0], proc.returncode, duration
        )
        return ProcessResult(
            command=argv,
            exit_code=proc.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            duration_seconds=duration,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _wait(
        self,
        proc: subprocess.Popen[str],
        argv: list[str],
        started: float,
        timeout: float | None,
        cancel: CancelToken | None,
    ) -> tuple[str, str]:
        deadline = None if timeout is None else started + timeout
        while True:
            slice_seconds = self._poll_interval
            if deadline is not None:
                slice_seconds = max(min(slice_seconds, deadline - time.monotonic()), 0.0)
            try:
                return proc.communicate(timeout=slice_seconds)
            except subprocess.TimeoutExpired:
                pass

            if cancel is not None and cancel.cancelled:
                logger.warning("Killing %s: %s", argv[0], cancel.reason)
                self._kill(proc)
                raise OperationCancelled(cancel.reason, shlex.join(argv))
            if deadline is not None and time.monotonic() >= deadline:
                logger.warning("Killing %s: timed out after %.1fs", argv[0], timeout)
                self._kill(proc)
                raise ProcessTimeout(argv, timeout or 0.0)

    @staticmethod
    def _kill(proc: subprocess.Popen[str]) -> None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        try:
            proc.communicate(timeout=KILL_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            logger.error("Process %d did not exit after kill", proc.pid)
