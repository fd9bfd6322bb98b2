"""PipelineRun — the aggregate root for one execution of the pipeline.

The coordinator is the only writer.  Stage outcomes, artifact results,
service deployments and health results are appended or replaced through
the methods below; once ``finalize()`` has been called the run is sealed
and every further mutation raises ``RunFinalizedError``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from deckhand.models.artifacts import ArtifactResult
from deckhand.models.deployments import ServiceDeployment
from deckhand.models.health import HealthResult
from deckhand.models.stages import PipelineStage, RunStatus, StageOutcome, StageState


class RunFinalizedError(RuntimeError):
    """Raised when something tries to modify a finalized run."""


class CommitInfo(BaseModel):
    """Source metadata for the commit being deployed.  Every field is optional."""

    model_config = ConfigDict(frozen=True)

    branch: str | None = None
    commit: str | None = None
    short_commit: str | None = None
    author: str | None = None
    message: str | None = None

    @property
    def is_empty(self) -> bool:
        return not any(self.model_dump().values())


def _new_run_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"dh-{ts}-{uuid.uuid4().hex[:4]}"


class PipelineRun(BaseModel):
    """Aggregate record of one pipeline run."""

    model_config = ConfigDict(validate_assignment=True)

    run_id: str = Field(default_factory=_new_run_id)
    project: str
    build_id: str
    status: RunStatus = RunStatus.RUNNING
    reason: str = ""
    failing_stage: PipelineStage | None = None
    stages: list[StageOutcome] = Field(default_factory=list)
    artifacts: list[ArtifactResult] = Field(default_factory=list)
    services: list[ServiceDeployment] = Field(default_factory=list)
    health: dict[str, HealthResult] = Field(default_factory=dict)
    commit: CommitInfo = Field(default_factory=CommitInfo)
    console_url: str | None = None
    build_url: str | None = None
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    ended_at: datetime | None = None
    finalized_at: datetime | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        if self.__dict__.get("finalized_at") is not None:
            raise RunFinalizedError(
                f"Run {self.run_id} is finalized; cannot set {name}"
            )
        super().__setattr__(name, value)

    # ------------------------------------------------------------------
    # Mutation (coordinator only)
    # ------------------------------------------------------------------

    def record_stage(self, outcome: StageOutcome) -> None:
        """Append a stage outcome; the first failure names the failing stage."""
        self._ensure_open()
        self.stages.append(outcome)
        if outcome.is_failure and self.failing_stage is None:
            self.failing_stage = outcome.stage

    def set_artifacts(self, results: list[ArtifactResult]) -> None:
        self._ensure_open()
        self.artifacts = list(results)

    def set_services(self, services: list[ServiceDeployment]) -> None:
        self._ensure_open()
        self.services = list(services)

    def set_health(self, results: dict[str, HealthResult]) -> None:
        self._ensure_open()
        self.health = dict(results)

    def set_commit(self, commit: CommitInfo) -> None:
        self._ensure_open()
        self.commit = commit

    def complete(self, status: RunStatus, reason: str = "") -> None:
        """Set the terminal status.  The run stays open for the Notify stage."""
        self._ensure_open()
        if status == RunStatus.RUNNING:
            raise ValueError("A run cannot complete with status 'running'")
        self.status = status
        self.reason = reason
        self.ended_at = datetime.now(timezone.utc)

    def finalize(self) -> None:
        """Seal the run.  No mutation is allowed afterwards."""
        self._ensure_open()
        if self.ended_at is None:
            self.ended_at = datetime.now(timezone.utc)
        self.finalized_at = datetime.now(timezone.utc)

    def _ensure_open(self) -> None:
        if self.finalized_at is not None:
            raise RunFinalizedError(f"Run {self.run_id} is finalized")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def is_finalized(self) -> bool:
        return self.finalized_at is not None

    @property
    def duration_seconds(self) -> float:
        end = self.ended_at or datetime.now(timezone.utc)
        return max((end - self.started_at).total_seconds(), 0.0)

    def stage_outcome(self, stage: PipelineStage) -> StageOutcome | None:
        """Return the most recent outcome recorded for *stage*."""
        for outcome in reversed(self.stages):
            if outcome.stage == stage:
                return outcome
        return None

    def has_degraded_stage(self) -> bool:
        return any(s.state == StageState.DEGRADED for s in self.stages)
