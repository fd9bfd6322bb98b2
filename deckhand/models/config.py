"""Pipeline configuration models and the TOML loader.

Loaded from ``deckhand.toml`` or the ``[tool.deckhand]`` table of
``pyproject.toml``.  Relative paths are resolved against the directory
that holds the configuration file.
"""

from __future__ import annotations

import tomllib
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from deckhand.models.health import HealthCheckSpec


class ConfigError(RuntimeError):
    """Raised when a pipeline configuration file is missing or invalid."""


class CheckoutConfig(BaseModel):
    """How to obtain the source tree and where it lives."""

    model_config = ConfigDict(frozen=True)

    repo_dir: Path = Path(".")
    command: list[str] = Field(default_factory=list)  # empty: source already present
    timeout: float = 300.0


class StepKind(str, Enum):
    INSTALL = "install"
    TEST = "test"


class BuildStepConfig(BaseModel):
    """An install or test command run during the Build stage."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: StepKind = StepKind.INSTALL
    command: list[str]
    working_dir: Path = Path(".")
    timeout: float = 900.0
    manifest: Path | None = None  # e.g. package.json
    require_script: str | None = None  # script the manifest must declare


class ArtifactConfig(BaseModel):
    """An image to build; the tag is supplied per run."""

    model_config = ConfigDict(frozen=True)

    name: str
    image: str
    context: Path = Path(".")
    dockerfile: Path | None = None  # defaults to <context>/Dockerfile

    @property
    def resolved_dockerfile(self) -> Path:
        return self.dockerfile or self.context / "Dockerfile"


class ServiceConfig(BaseModel):
    """A compose service and the artifact it runs."""

    model_config = ConfigDict(frozen=True)

    name: str
    artifact: str
    container_name: str | None = None
    image_env: str | None = None


class DeploySettings(BaseModel):
    """Compose project settings.  ``secret_env`` lists variable names only."""

    model_config = ConfigDict(frozen=True)

    project_name: str | None = None
    compose_file: Path = Path("docker-compose.yml")
    working_dir: Path | None = None
    environment: dict[str, str] = Field(default_factory=dict)
    secret_env: list[str] = Field(default_factory=list)
    tag_env: str = "BUILD_TAG"
    rebuild: bool = False
    timeout: float = 600.0


class ToolsConfig(BaseModel):
    """External executables.  Overridable for podman or compose v1."""

    model_config = ConfigDict(frozen=True)

    git: str = "git"
    builder: str = "docker"
    runtime: str = "docker"
    compose: list[str] = Field(default_factory=lambda: ["docker", "compose"])
    build_timeout: float = 1800.0


class FailurePolicy(BaseModel):
    """Which failures end the run and which only degrade it."""

    model_config = ConfigDict(frozen=True)

    test_failures_fatal: bool = False
    partial_build_fatal: bool = True
    health_failures_fatal: bool = False
    rollback_on_deploy_failure: bool = True


class PipelineConfig(BaseModel):
    """Project-level configuration for a Deckhand pipeline."""

    model_config = ConfigDict(frozen=True)

    project_name: str = "app"
    base_dir: Path = Path(".")
    checkout: CheckoutConfig = CheckoutConfig()
    build_steps: list[BuildStepConfig] = Field(default_factory=list)
    artifacts: list[ArtifactConfig] = Field(default_factory=list)
    services: list[ServiceConfig] = Field(default_factory=list)
    deploy: DeploySettings = DeploySettings()
    health_checks: list[HealthCheckSpec] = Field(default_factory=list)
    tools: ToolsConfig = ToolsConfig()
    policy: FailurePolicy = FailurePolicy()
    max_build_workers: int | None = None
    timeout: float | None = None  # whole-run deadline in seconds

    @model_validator(mode="after")
    def _check_references(self) -> PipelineConfig:
        artifact_names = [a.name for a in self.artifacts]
        if len(artifact_names) != len(set(artifact_names)):
            raise ValueError("artifact names must be unique")
        service_names = [s.name for s in self.services]
        if len(service_names) != len(set(service_names)):
            raise ValueError("service names must be unique")
        for service in self.services:
            if service.artifact not in artifact_names:
                raise ValueError(
                    f"service {service.name!r} references unknown artifact "
                    f"{service.artifact!r}"
                )
        checked = [c.service for c in self.health_checks]
        if len(checked) != len(set(checked)):
            raise ValueError("at most one health check per service")
        for check in self.health_checks:
            if check.service not in service_names:
                raise ValueError(
                    f"health check references unknown service {check.service!r}"
                )
        return self

    @property
    def compose_project(self) -> str:
        return self.deploy.project_name or self.project_name

    def resolve(self, path: Path) -> Path:
        """Resolve *path* against the configuration's base directory."""
        return path if path.is_absolute() else self.base_dir / path


def load_pipeline_config(path: Path | str) -> PipelineConfig:
    """Load a PipelineConfig from ``deckhand.toml`` or ``pyproject.toml``.

    Raises ``ConfigError`` if the file is missing, unparsable, lacks a
    ``[tool.deckhand]`` table (pyproject only), or fails validation.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with path.open("rb") as fh:
            data: dict[str, Any] = tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc

    if path.name == "pyproject.toml":
        data = data.get("tool", {}).get("deckhand")
        if data is None:
            raise ConfigError(f"No [tool.deckhand] table in {path}")

    data = dict(data)
    data.setdefault("base_dir", path.parent.resolve())
    try:
        return PipelineConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid pipeline configuration in {path}:\n{exc}") from exc
