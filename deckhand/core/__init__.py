"""Pipeline engine: process execution, building, deployment, health checks.

Modules
-------
process
    ``ProcessRunner`` and the run-wide ``CancelToken``.
builder
    ``ArtifactBuilder`` builds and tags one image per artifact, in parallel.
deployer
    ``DeploymentOrchestrator`` tears down and relaunches the compose project.
health
    ``HealthVerifier`` polls service health endpoints until a verdict.
coordinator
    ``PipelineCoordinator`` sequences the stages of a run.
"""
