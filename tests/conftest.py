"""Shared test fixtures for Deckhand."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import pytest

from deckhand.config import DeckhandSettings
from deckhand.core.coordinator import PipelineCoordinator
from deckhand.core.health import HealthVerifier
from deckhand.core.process import CancelToken, ProcessResult
from deckhand.models.config import (
    ArtifactConfig,
    DeploySettings,
    PipelineConfig,
    ServiceConfig,
)
from deckhand.models.health import HealthCheckSpec
from deckhand.models.notifications import MessageKind, NotificationMessage
from deckhand.models.run import PipelineRun
from deckhand.models.stages import RunStatus
from deckhand.notify.reporter import NotificationReporter

SECRET_VALUE = "hunter2-db-password"


# ---------------------------------------------------------------------------
# Fake process runner
# ---------------------------------------------------------------------------


@dataclass
class RecordedCall:
    argv: list[str]
    working_dir: Path | str | None
    env: dict[str, str] | None
    timeout: float | None

    @property
    def line(self) -> str:
        return " ".join(self.argv)


@dataclass
class _Rule:
    prefix: tuple[str, ...]
    contains: str | None
    arg: str | None = None
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    raises: BaseException | None = None
    action: Callable[[RecordedCall, CancelToken | None], None] | None = None

    def matches(self, argv: list[str]) -> bool:
        if tuple(argv[: len(self.prefix)]) != self.prefix:
            return False
        if self.arg is not None and self.arg not in argv:
            return False
        return self.contains is None or self.contains in " ".join(argv)


@dataclass
class FakeRunner:
    """Scripted stand-in for ProcessRunner.

    Rules are matched newest first by argv prefix, an optional exact
    argument (``arg``) and an optional substring of the joined command
    line (``contains``).  Unmatched commands succeed with empty output.
    Prefer ``arg`` for subcommands: ``contains`` also sees paths, which
    carry the test name.
    """

    calls: list[RecordedCall] = field(default_factory=list)
    _rules: list[_Rule] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def on(
        self,
        *prefix: str,
        contains: str | None = None,
        arg: str | None = None,
        **behaviour: Any,
    ) -> FakeRunner:
        self._rules.insert(0, _Rule(tuple(prefix), contains, arg, **behaviour))
        return self

    def run(
        self,
        command,
        working_dir=None,
        env_overrides=None,
        timeout=None,
        cancel=None,
    ) -> ProcessResult:
        argv = [str(part) for part in command]
        call = RecordedCall(argv, working_dir, dict(env_overrides or {}) or None, timeout)
        with self._lock:
            self.calls.append(call)
        if cancel is not None:
            cancel.raise_if_cancelled(" ".join(argv))

        rule = next((r for r in self._rules if r.matches(argv)), None)
        if rule is None:
            return ProcessResult(command=argv, exit_code=0)
        if rule.action is not None:
            rule.action(call, cancel)
        if rule.raises is not None:
            raise rule.raises
        return ProcessResult(
            command=argv, exit_code=rule.exit_code, stdout=rule.stdout, stderr=rule.stderr
        )

    def lines(self, *prefix: str) -> list[str]:
        """Recorded command lines starting with *prefix*."""
        return [
            c.line for c in self.calls if tuple(c.argv[: len(prefix)]) == tuple(prefix)
        ]


@pytest.fixture
def fake_runner() -> FakeRunner:
    """A FakeRunner where git reports a commit on ``main``."""
    runner = FakeRunner()
    runner.on("git", contains="rev-parse HEAD", stdout="0123456789abcdef0123\n")
    runner.on("git", contains="--short", stdout="0123456\n")
    runner.on("git", contains="--abbrev-ref", stdout="main\n")
    runner.on("git", contains="log -1", stdout="Ada Lovelace\x1fFix the widget\n")
    runner.on("docker", "image", "inspect", stdout="sha256:feedface\n")
    return runner


# ---------------------------------------------------------------------------
# Notification sinks
# ---------------------------------------------------------------------------


class RecordingSink:
    """In-memory sink; optionally rejects some message kinds."""

    def __init__(self, name: str = "recording", reject: set[MessageKind] | None = None) -> None:
        self._name = name
        self.reject = reject or set()
        self.messages: list[NotificationMessage] = []

    @property
    def sink_name(self) -> str:
        return self._name

    def send(self, message: NotificationMessage) -> None:
        if message.kind in self.reject:
            raise RuntimeError(f"{self._name} rejects {message.kind.value}")
        self.messages.append(message)


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


def health_transport(
    responses: dict[str, int | Callable[[httpx.Request], httpx.Response]],
) -> httpx.MockTransport:
    """MockTransport answering by host; unknown hosts refuse the connection."""

    def handler(request: httpx.Request) -> httpx.Response:
        answer = responses.get(request.url.host)
        if answer is None:
            raise httpx.ConnectError("connection refused", request=request)
        if callable(answer):
            return answer(request)
        return httpx.Response(answer, text="ok")

    return httpx.MockTransport(handler)


# ---------------------------------------------------------------------------
# Project layout and configuration
# ---------------------------------------------------------------------------


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A two-artifact project with Dockerfiles and a compose file."""
    root = tmp_path / "project"
    for name in ("api", "web"):
        context = root / name
        context.mkdir(parents=True)
        (context / "Dockerfile").write_text("FROM scratch\n", encoding="utf-8")
    (root / "docker-compose.yml").write_text("services: {}\n", encoding="utf-8")
    return root


@pytest.fixture
def pipeline_config(project_dir: Path) -> PipelineConfig:
    return PipelineConfig(
        project_name="shop",
        base_dir=project_dir,
        artifacts=[
            ArtifactConfig(name="api", image="registry.test/shop-api", context=Path("api")),
            ArtifactConfig(name="web", image="registry.test/shop-web", context=Path("web")),
        ],
        services=[
            ServiceConfig(name="api", artifact="api", container_name="shop-api", image_env="API_IMAGE"),
            ServiceConfig(name="web", artifact="web", container_name="shop-web", image_env="WEB_IMAGE"),
        ],
        deploy=DeploySettings(
            environment={"APP_ENV": "test"},
            secret_env=["DB_PASSWORD"],
        ),
        health_checks=[
            HealthCheckSpec(
                service="api", url="http://api.test/health",
                poll_interval=0.01, max_wait=0.3, request_timeout=0.1,
            ),
            HealthCheckSpec(
                service="web", url="http://web.test/",
                poll_interval=0.01, max_wait=0.3, request_timeout=0.1,
            ),
        ],
    )


@pytest.fixture
def settings(tmp_path: Path) -> DeckhandSettings:
    return DeckhandSettings(
        _env_file=None,
        state_dir=tmp_path / "state",
        settle_delay_seconds=0,
        archive_reports=False,
        webhook_url="",
        build_id=None,
        console_url="https://ci.test/job/shop/7/console",
    )


@pytest.fixture
def secret_environ() -> dict[str, str]:
    return {"DB_PASSWORD": SECRET_VALUE}


@pytest.fixture
def make_coordinator(
    pipeline_config: PipelineConfig,
    settings: DeckhandSettings,
    fake_runner: FakeRunner,
    recording_sink: RecordingSink,
    secret_environ: dict[str, str],
) -> Callable[..., PipelineCoordinator]:
    """Factory: a coordinator wired to fakes; health answers per host."""

    def _factory(
        health: dict[str, Any] | None = None,
        config: PipelineConfig | None = None,
        **overrides: Any,
    ) -> PipelineCoordinator:
        responses = {"api.test": 200, "web.test": 200} if health is None else health
        kwargs: dict[str, Any] = {
            "settings": settings,
            "runner": fake_runner,
            "verifier": HealthVerifier(settle_delay=0, transport=health_transport(responses)),
            "reporter": NotificationReporter([recording_sink]),
            "environ": secret_environ,
        }
        kwargs.update(overrides)
        return PipelineCoordinator(config or pipeline_config, **kwargs)

    return _factory


@pytest.fixture
def finished_run_factory() -> Callable[..., PipelineRun]:
    """Factory fixture: a completed (not finalized) PipelineRun."""

    def _factory(status: RunStatus = RunStatus.SUCCESS, **overrides: Any) -> PipelineRun:
        values: dict[str, Any] = {"project": "shop", "build_id": "7"}
        values.update(overrides)
        run = PipelineRun(**values)
        run.complete(status)
        return run

    return _factory
