"""DeploymentOrchestrator — rolls out the application through a compose tool.

A deploy is teardown, forced cleanup, then launch:

1. ``compose down`` for the project; "nothing to stop" counts as success.
2. ``rm -f`` of every named container that teardown may have missed
   (containers left behind by a crashed earlier run).
3. ``compose up -d`` with image references, the build tag and secrets in
   the subprocess environment only.

Services come back ``starting``; the health verifier decides whether
they end up ``running`` or ``unhealthy``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone

from pydantic import SecretStr

from deckhand.core.process import (
    CancelToken,
    ProcessLaunchError,
    ProcessResult,
    ProcessRunner,
    ProcessTimeout,
    redact,
)
from deckhand.models.deployments import (
    DeploymentConfiguration,
    ServiceDeployment,
    ServiceState,
)

logger = logging.getLogger(__name__)

# Tool output that means there was nothing to tear down.
_NOTHING_TO_STOP_MARKERS = (
    "no such",
    "not found",
    "no resource found",
    "no containers",
)


class DeploymentLaunchError(RuntimeError):
    """Raised when the compose tool fails to bring the application up."""

    def __init__(self, message: str, result: ProcessResult | None = None) -> None:
        self.result = result
        super().__init__(message)


def collect_secrets(
    names: Sequence[str], environ: Mapping[str, str]
) -> dict[str, SecretStr]:
    """Read secret values by name from *environ*.

    Raises ``DeploymentLaunchError`` naming (never revealing) missing secrets.
    """
    missing = [name for name in names if not environ.get(name)]
    if missing:
        raise DeploymentLaunchError(
            f"Missing required secret(s) in environment: {', '.join(missing)}"
        )
    return {name: SecretStr(environ[name]) for name in names}


def retag(image_ref: str, tag: str) -> str:
    """Replace the tag of *image_ref*; registry ports are left alone."""
    name, sep, current = image_ref.rpartition(":")
    if not sep or "/" in current:
        name = image_ref
    return f"{name}:{tag}"


class DeploymentOrchestrator:
    """Stops the previous deployment and launches a new one.

    Parameters
    ----------
    runner:
        Process runner for compose and runtime invocations.
    compose_command:
        Compose CLI prefix, e.g. ``["docker", "compose"]`` or ``["docker-compose"]``.
    runtime_binary:
        Container runtime CLI used for forced cleanup.
    timeout:
        Timeout in seconds for each compose invocation.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        *,
        compose_command: Sequence[str] = ("docker", "compose"),
        runtime_binary: str = "docker",
        timeout: float = 600.0,
    ) -> None:
        self._runner = runner
        self._compose = list(compose_command)
        self._runtime = runtime_binary
        self._timeout = timeout

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def deploy(
        self,
        services: Sequence[ServiceDeployment],
        configuration: DeploymentConfiguration,
        cancel: CancelToken | None = None,
    ) -> list[ServiceDeployment]:
        """Teardown, clean up, launch.  Returns the services as ``starting``.

        Raises ``DeploymentLaunchError`` if the launch fails.
        """
        logger.info(
            "Deploying %s (%d service(s), tag %s)",
            configuration.project_name, len(services), configuration.tag or "-",
        )
        self.teardown(services, configuration, cancel)
        self.force_cleanup(services, cancel)
        self.launch(services, configuration, cancel)

        started_at = datetime.now(timezone.utc)
        return [s.with_state(ServiceState.STARTING, started_at=started_at) for s in services]

    def rollback(
        self,
        services: Sequence[ServiceDeployment],
        configuration: DeploymentConfiguration,
        previous_tag: str | None,
        cancel: CancelToken | None = None,
    ) -> list[ServiceDeployment]:
        """Undo a failed rollout.

        With a known *previous_tag* the services are relaunched from the
        images of that tag and come back ``starting``; without one the
        failed deployment is only torn down and services are ``stopped``.
        """
        if not previous_tag:
            logger.warning(
                "No previous deployment of %s recorded; tearing down only",
                configuration.project_name,
            )
            return self.stop(services, configuration, cancel)

        logger.warning(
            "Rolling %s back to tag %s", configuration.project_name, previous_tag
        )
        restored = [
            s.model_copy(update={"artifact_ref": retag(s.artifact_ref, previous_tag)})
            for s in services
        ]
        previous = configuration.model_copy(update={"tag": previous_tag, "rebuild": False})
        return self.deploy(restored, previous, cancel)

    def stop(
        self,
        services: Sequence[ServiceDeployment],
        configuration: DeploymentConfiguration,
        cancel: CancelToken | None = None,
    ) -> list[ServiceDeployment]:
        """Tear the deployment down and mark every service ``stopped``."""
        self.teardown(services, configuration, cancel)
        self.force_cleanup(services, cancel)
        return [s.with_state(ServiceState.STOPPED) for s in services]

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def teardown(
        self,
        services: Sequence[ServiceDeployment],
        configuration: DeploymentConfiguration,
        cancel: CancelToken | None = None,
    ) -> bool:
        """Stop and remove the project's containers.  Never raises on tool failure."""
        command = self._compose_base(configuration) + ["down", "--remove-orphans"]
        try:
            result = self._runner.run(
                command,
                working_dir=configuration.working_dir,
                env_overrides=self.launch_environment(services, configuration),
                timeout=self._timeout,
                cancel=cancel,
            )
        except (ProcessTimeout, ProcessLaunchError) as exc:
            logger.warning("Teardown of %s failed: %s", configuration.project_name, exc)
            return False

        if result.ok:
            return True
        output = (result.stdout + result.stderr).lower()
        if any(marker in output for marker in _NOTHING_TO_STOP_MARKERS):
            logger.info("Nothing to tear down for %s", configuration.project_name)
            return True
        logger.warning(
            "Teardown of %s exited %d: %s",
            configuration.project_name,
            result.exit_code,
            redact(result.output_tail(5), configuration.secret_values()),
        )
        return False

    def force_cleanup(
        self,
        services: Sequence[ServiceDeployment],
        cancel: CancelToken | None = None,
    ) -> list[str]:
        """Remove stale containers by name.  Returns the names removed."""
        removed: list[str] = []
        for service in services:
            if not service.container_name:
                continue
            try:
                result = self._runner.run(
                    [self._runtime, "rm", "-f", service.container_name],
                    timeout=60.0,
                    cancel=cancel,
                )
            except (ProcessTimeout, ProcessLaunchError) as exc:
                logger.warning("Cleanup of %s failed: %s", service.container_name, exc)
                continue
            if result.ok:
                removed.append(service.container_name)
            elif "no such container" in result.stderr.lower():
                logger.debug("No stale container %s", service.container_name)
            else:
                logger.warning(
                    "Cleanup of %s exited %d: %s",
                    service.container_name, result.exit_code, result.output_tail(3),
                )
        return removed

    def launch(
        self,
        services: Sequence[ServiceDeployment],
        configuration: DeploymentConfiguration,
        cancel: CancelToken | None = None,
    ) -> ProcessResult:
        """Bring the services up.  Raises ``DeploymentLaunchError`` on failure."""
        command = self._compose_base(configuration) + ["up", "-d"]
        if configuration.rebuild:
            command.append("--build")
        command.extend(s.service for s in services)

        secrets = configuration.secret_values()
        try:
            result = self._runner.run(
                command,
                working_dir=configuration.working_dir,
                env_overrides=self.launch_environment(services, configuration),
                timeout=self._timeout,
                cancel=cancel,
            )
        except (ProcessTimeout, ProcessLaunchError) as exc:
            raise DeploymentLaunchError(
                f"Launch of {configuration.project_name} failed: {redact(str(exc), secrets)}"
            ) from exc

        if not result.ok:
            raise DeploymentLaunchError(
                f"Launch of {configuration.project_name} exited {result.exit_code}: "
                f"{redact(result.output_tail(10), secrets)}",
                result,
            )
        logger.info("Launched %s", configuration.project_name)
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _compose_base(self, configuration: DeploymentConfiguration) -> list[str]:
        return self._compose + [
            "-p", configuration.project_name,
            "-f", str(configuration.compose_file),
        ]

    @staticmethod
    def launch_environment(
        services: Sequence[ServiceDeployment],
        configuration: DeploymentConfiguration,
    ) -> dict[str, str]:
        """Environment injected into compose invocations (never logged)."""
        env = dict(configuration.environment)
        if configuration.tag:
            env[configuration.tag_env] = configuration.tag
        for service in services:
            if service.image_env:
                env[service.image_env] = service.artifact_ref
        for name, secret in configuration.secrets.items():
            env[name] = secret.get_secret_value()
        return env
