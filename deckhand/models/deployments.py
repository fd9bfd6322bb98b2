"""Deployment models — per-service rollout state and launch configuration."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class ServiceState(str, Enum):
    """Rollout state of a single service."""

    PENDING = "pending"
    STARTING = "starting"
    RUNNING = "running"
    UNHEALTHY = "unhealthy"
    STOPPED = "stopped"
    FAILED = "failed"


class ServiceDeployment(BaseModel):
    """Desired and current state of one deployed service.

    Frozen: the orchestrator and the health verifier hand back updated
    copies instead of mutating records in place.
    """

    model_config = ConfigDict(frozen=True)

    service: str
    artifact_ref: str
    container_name: str | None = None
    image_env: str | None = None  # compose variable that carries artifact_ref
    state: ServiceState = ServiceState.PENDING
    started_at: datetime | None = None

    def with_state(
        self, state: ServiceState, *, started_at: datetime | None = None
    ) -> ServiceDeployment:
        update: dict[str, object] = {"state": state}
        if started_at is not None:
            update["started_at"] = started_at
        return self.model_copy(update=update)


class DeploymentConfiguration(BaseModel):
    """Everything the compose tool needs for one launch.

    ``secrets`` are only ever placed in the launch subprocess environment.
    """

    model_config = ConfigDict(frozen=True)

    project_name: str
    compose_file: Path = Path("docker-compose.yml")
    working_dir: Path | None = None
    environment: dict[str, str] = Field(default_factory=dict)
    secrets: dict[str, SecretStr] = Field(default_factory=dict)
    tag: str = ""
    tag_env: str = "BUILD_TAG"
    rebuild: bool = False

    def secret_values(self) -> list[str]:
        """Return the raw secret values (for redaction only)."""
        return [s.get_secret_value() for s in self.secrets.values() if s.get_secret_value()]
