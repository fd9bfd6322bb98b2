"""Tests for ProcessRunner and CancelToken, using real child processes."""

from __future__ import annotations

import sys
import threading
import time

import pytest

from deckhand.core.process import (
    CancelToken,
    OperationCancelled,
    ProcessLaunchError,
    ProcessResult,
    ProcessRunner,
    ProcessTimeout,
    redact,
)

PY = sys.executable


@pytest.fixture
def runner() -> ProcessRunner:
    return ProcessRunner(poll_interval=0.02)


class TestProcessRunner:
    def test_captures_exit_code_and_output(self, runner: ProcessRunner):
        result = runner.run(
            [PY, "-c", "import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)"]
        )
        assert result.exit_code == 3
        assert not result.ok
        assert result.stdout.strip() == "out"
        assert result.stderr.strip() == "err"
        assert result.duration_seconds >= 0

    def test_nonzero_exit_is_a_result_not_an_error(self, runner: ProcessRunner):
        result = runner.run([PY, "-c", "raise SystemExit(1)"])
        assert result.exit_code == 1

    def test_env_overrides_reach_child(self, runner: ProcessRunner):
        result = runner.run(
            [PY, "-c", "import os; print(os.environ['DECKHAND_TEST_VAR'])"],
            env_overrides={"DECKHAND_TEST_VAR": "visible"},
        )
        assert result.stdout.strip() == "visible"

    def test_working_dir(self, runner: ProcessRunner, tmp_path):
        result = runner.run([PY, "-c", "import os; print(os.getcwd())"], working_dir=tmp_path)
        assert result.stdout.strip() == str(tmp_path.resolve())

    def test_missing_executable_raises_launch_error(self, runner: ProcessRunner):
        with pytest.raises(ProcessLaunchError):
            runner.run(["deckhand-definitely-not-a-binary"])

    def test_empty_command_rejected(self, runner: ProcessRunner):
        with pytest.raises(ProcessLaunchError):
            runner.run([])

    def test_timeout_kills_child(self, runner: ProcessRunner):
        started = time.monotonic()
        with pytest.raises(ProcessTimeout) as exc_info:
            runner.run([PY, "-c", "import time; time.sleep(30)"], timeout=0.3)
        assert time.monotonic() - started < 10
        assert exc_info.value.timeout == pytest.approx(0.3)

    def test_invalid_utf8_is_replaced(self, runner: ProcessRunner):
        result = runner.run([PY, "-c", "import sys; sys.stdout.buffer.write(b'ok\\xff')"])
        assert result.stdout.startswith("ok")
        assert "�" in result.stdout

    def test_cancel_kills_child(self, runner: ProcessRunner):
        token = CancelToken()
        timer = threading.Timer(0.2, token.cancel)
        timer.start()
        try:
            with pytest.raises(OperationCancelled) as exc_info:
                runner.run([PY, "-c", "import time; time.sleep(30)"], cancel=token)
        finally:
            timer.cancel()
        assert exc_info.value.reason == "cancelled"

    def test_already_cancelled_token_never_starts(self, runner: ProcessRunner, tmp_path):
        marker = tmp_path / "started"
        token = CancelToken()
        token.cancel()
        with pytest.raises(OperationCancelled):
            runner.run([PY, "-c", f"open({str(marker)!r}, 'w').close()"], cancel=token)
        assert not marker.exists()

    def test_global_deadline_reports_timeout(self, runner: ProcessRunner):
        token = CancelToken(0.2)
        with pytest.raises(OperationCancelled) as exc_info:
            runner.run([PY, "-c", "import time; time.sleep(30)"], cancel=token)
        assert exc_info.value.reason == "timeout"


class TestCancelToken:
    def test_no_deadline(self):
        token = CancelToken()
        assert not token.cancelled
        assert token.remaining() is None
        assert token.bound(5.0) == 5.0

    def test_manual_cancel(self):
        token = CancelToken()
        token.cancel()
        assert token.cancelled
        assert not token.expired
        assert token.reason == "cancelled"

    def test_deadline_with_fake_clock(self):
        now = [100.0]
        token = CancelToken(10.0, clock=lambda: now[0])
        assert token.remaining() == pytest.approx(10.0)
        assert token.bound(30.0) == pytest.approx(10.0)
        assert token.bound(None) == pytest.approx(10.0)
        now[0] = 111.0
        assert token.expired
        assert token.reason == "timeout"
        assert token.remaining() == 0.0

    def test_raise_if_cancelled(self):
        token = CancelToken()
        token.raise_if_cancelled("noop")
        token.cancel()
        with pytest.raises(OperationCancelled, match="deploy"):
            token.raise_if_cancelled("deploy")

    def test_wait_wakes_on_cancel(self):
        token = CancelToken()
        threading.Timer(0.1, token.cancel).start()
        started = time.monotonic()
        assert token.wait(10.0) is True
        assert time.monotonic() - started < 5


class TestHelpers:
    def test_redact(self):
        assert redact("password=abc123 again abc123", ["abc123"]) == (
            "password=******** again ********"
        )

    def test_redact_ignores_empty_secret(self):
        assert redact("unchanged", [""]) == "unchanged"

    def test_output_tail_prefers_stderr(self):
        result = ProcessResult(
            command=["x"], exit_code=1, stdout="a\nb\n", stderr="one\ntwo\nthree\n"
        )
        assert result.output_tail(2) == "two\nthree"

    def test_output_tail_falls_back_to_stdout(self):
        result = ProcessResult(command=["x"], exit_code=1, stdout="only stdout\n")
        assert result.output_tail() == "only stdout"
