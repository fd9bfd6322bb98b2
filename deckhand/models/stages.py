"""Pipeline stage models — the coordinator's state machine vocabulary."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class PipelineStage(str, Enum):
    """The stages a run moves through, in order."""

    CHECKOUT = "checkout"
    BUILD = "build"
    PACKAGE = "package"
    DEPLOY = "deploy"
    VERIFY = "verify"
    NOTIFY = "notify"
    DONE = "done"


# Every stage may short-circuit to NOTIFY; NOTIFY is the only way to DONE.
VALID_TRANSITIONS: dict[PipelineStage, set[PipelineStage]] = {
    PipelineStage.CHECKOUT: {PipelineStage.BUILD, PipelineStage.NOTIFY},
    PipelineStage.BUILD: {PipelineStage.PACKAGE, PipelineStage.NOTIFY},
    PipelineStage.PACKAGE: {PipelineStage.DEPLOY, PipelineStage.NOTIFY},
    PipelineStage.DEPLOY: {PipelineStage.VERIFY, PipelineStage.NOTIFY},
    PipelineStage.VERIFY: {PipelineStage.NOTIFY},
    PipelineStage.NOTIFY: {PipelineStage.DONE},
    PipelineStage.DONE: set(),  # terminal
}

STAGE_ORDER: list[PipelineStage] = [
    PipelineStage.CHECKOUT,
    PipelineStage.BUILD,
    PipelineStage.PACKAGE,
    PipelineStage.DEPLOY,
    PipelineStage.VERIFY,
    PipelineStage.NOTIFY,
]


class StageState(str, Enum):
    """Outcome recorded for a finished stage."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    DEGRADED = "degraded"  # completed, but with a non-fatal problem


class RunStatus(str, Enum):
    """Overall status of a pipeline run."""

    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"

    @property
    def exit_code(self) -> int:
        """Process exit code a hosting CLI should return for this status."""
        if self in (RunStatus.SUCCESS, RunStatus.PARTIAL_FAILURE):
            return 0
        return 1


class StageOutcome(BaseModel):
    """What happened in one stage of a run."""

    model_config = ConfigDict(frozen=True)

    stage: PipelineStage
    state: StageState
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    ended_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    detail: str = ""
    error: str | None = None

    @property
    def duration_seconds(self) -> float:
        return max((self.ended_at - self.started_at).total_seconds(), 0.0)

    @property
    def is_failure(self) -> bool:
        return self.state == StageState.FAILED
