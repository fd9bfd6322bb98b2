"""Deckhand data models (Pydantic v2).  Everything except PipelineRun is frozen."""

from deckhand.models.artifacts import ArtifactOutcome, ArtifactResult, BuildSpec
from deckhand.models.config import (
    ArtifactConfig,
    BuildStepConfig,
    CheckoutConfig,
    ConfigError,
    DeploySettings,
    FailurePolicy,
    PipelineConfig,
    ServiceConfig,
    StepKind,
    ToolsConfig,
    load_pipeline_config,
)
from deckhand.models.deployments import (
    DeploymentConfiguration,
    ServiceDeployment,
    ServiceState,
)
from deckhand.models.health import HealthCheckSpec, HealthOutcome, HealthResult
from deckhand.models.notifications import (
    DeliveryOutcome,
    MessageKind,
    NotificationField,
    NotificationMessage,
)
from deckhand.models.run import CommitInfo, PipelineRun, RunFinalizedError
from deckhand.models.stages import (
    STAGE_ORDER,
    VALID_TRANSITIONS,
    PipelineStage,
    RunStatus,
    StageOutcome,
    StageState,
)

__all__ = [
    # stages
    "PipelineStage",
    "StageState",
    "StageOutcome",
    "RunStatus",
    "STAGE_ORDER",
    "VALID_TRANSITIONS",
    # artifacts
    "ArtifactOutcome",
    "BuildSpec",
    "ArtifactResult",
    # deployments
    "ServiceState",
    "ServiceDeployment",
    "DeploymentConfiguration",
    # health
    "HealthOutcome",
    "HealthCheckSpec",
    "HealthResult",
    # notifications
    "DeliveryOutcome",
    "MessageKind",
    "NotificationField",
    "NotificationMessage",
    # run
    "CommitInfo",
    "PipelineRun",
    "RunFinalizedError",
    # config
    "ConfigError",
    "CheckoutConfig",
    "StepKind",
    "BuildStepConfig",
    "ArtifactConfig",
    "ServiceConfig",
    "DeploySettings",
    "ToolsConfig",
    "FailurePolicy",
    "PipelineConfig",
    "load_pipeline_config",
]
