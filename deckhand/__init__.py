"""Deckhand: build, deploy and verify a containerized project in one run.

A run checks out the source, installs and tests it, builds one image per
artifact, relaunches the compose project with the new images, polls each
service's health endpoint and reports the outcome to a chat webhook.
"""

__version__ = "0.1.0"
__description__ = "Deployment orchestration and health verification pipeline"

from deckhand.core.coordinator import PipelineCoordinator
from deckhand.models.run import PipelineRun
from deckhand.models.stages import RunStatus

__all__ = ["PipelineCoordinator", "PipelineRun", "RunStatus", "__version__"]
