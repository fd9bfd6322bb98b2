"""Artifact models — what to build and what came out of the build."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict

LATEST_TAG = "latest"


class ArtifactOutcome(str, Enum):
    BUILT = "built"
    FAILED = "failed"


class BuildSpec(BaseModel):
    """One image to build in this run.

    ``tag`` is the run's build identifier; the image is additionally
    tagged ``latest`` so that both references resolve to the same digest.
    """

    model_config = ConfigDict(frozen=True)

    artifact: str
    image: str
    context: Path
    dockerfile: Path
    tag: str

    @property
    def version_ref(self) -> str:
        return f"{self.image}:{self.tag}"

    @property
    def latest_ref(self) -> str:
        return f"{self.image}:{LATEST_TAG}"


class ArtifactResult(BaseModel):
    """Immutable record of one artifact build."""

    model_config = ConfigDict(frozen=True)

    artifact: str
    image_ref: str
    outcome: ArtifactOutcome
    digest: str = ""
    error: str | None = None
    duration_seconds: float = 0.0

    @property
    def built(self) -> bool:
        return self.outcome == ArtifactOutcome.BUILT
