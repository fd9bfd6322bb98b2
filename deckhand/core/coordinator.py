"""Pipeline coordinator — sequences a Deckhand run from checkout to report.

The coordinator wires together the ProcessRunner, ArtifactBuilder,
DeploymentOrchestrator, HealthVerifier and NotificationReporter and walks
the stage machine:

    checkout -> build -> package -> deploy -> verify -> notify -> done

Stages run strictly one after another.  Stage-local errors are captured
as stage outcomes on the PipelineRun rather than propagated; a fatal
outcome skips the remaining stages and jumps to Notify, which runs on
every path.  A single CancelToken carries the global deadline into every
blocking call.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import NamedTuple

from deckhand.config import DeckhandSettings
from deckhand.core.builder import ArtifactBuildFailure, ArtifactBuilder
from deckhand.core.deployer import (
    DeploymentLaunchError,
    DeploymentOrchestrator,
    collect_secrets,
)
from deckhand.core.health import HealthCheckUnhealthy, HealthVerifier
from deckhand.core.preflight import MissingTestScript, check_manifest_script
from deckhand.core.process import (
    CancelToken,
    OperationCancelled,
    ProcessLaunchError,
    ProcessRunner,
    ProcessTimeout,
)
from deckhand.core.stage_machine import StageMachine
from deckhand.core.state import BuildCounter, DeploymentHistory
from deckhand.core.vcs import GitMetadataCollector
from deckhand.models.artifacts import BuildSpec
from deckhand.models.config import PipelineConfig, StepKind
from deckhand.models.deployments import (
    DeploymentConfiguration,
    ServiceDeployment,
    ServiceState,
)
from deckhand.models.health import HealthCheckSpec
from deckhand.models.notifications import DeliveryOutcome
from deckhand.models.run import PipelineRun
from deckhand.models.stages import (
    PipelineStage,
    RunStatus,
    StageOutcome,
    StageState,
)
from deckhand.notify.reporter import NotificationReporter

logger = logging.getLogger(__name__)

TIMEOUT_REASON = "Timeout"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StageReport(NamedTuple):
    """What a stage handler hands back to the coordinator."""

    state: StageState
    detail: str = ""
    error: str | None = None


class PipelineCoordinator:
    """Runs the full build, deploy, verify and notify pipeline.

    Parameters
    ----------
    config:
        Project pipeline configuration.
    settings:
        Host settings.  Loaded from the environment if not provided.
    runner, builder, deployer, verifier, reporter, git, build_counter, history:
        Collaborators; defaults are built from *config* and *settings*.
    environ:
        Source of secret values.  Defaults to ``os.environ``.
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        settings: DeckhandSettings | None = None,
        runner: ProcessRunner | None = None,
        builder: ArtifactBuilder | None = None,
        deployer: DeploymentOrchestrator | None = None,
        verifier: HealthVerifier | None = None,
        reporter: NotificationReporter | None = None,
        git: GitMetadataCollector | None = None,
        build_counter: BuildCounter | None = None,
        history: DeploymentHistory | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.config = config
        self.settings = settings or DeckhandSettings()
        self._environ = environ if environ is not None else os.environ

        self.runner = runner or ProcessRunner()
        self.builder = builder or ArtifactBuilder(
            self.runner,
            builder_binary=config.tools.builder,
            max_workers=config.max_build_workers or self.settings.max_build_workers,
            build_timeout=config.tools.build_timeout,
        )
        self.deployer = deployer or DeploymentOrchestrator(
            self.runner,
            compose_command=config.tools.compose,
            runtime_binary=config.tools.runtime,
            timeout=config.deploy.timeout,
        )
        self.verifier = verifier or HealthVerifier(
            settle_delay=self.settings.settle_delay_seconds
        )
        self.reporter = reporter or NotificationReporter.from_settings(self.settings)
        self.git = git or GitMetadataCollector(
            self.runner, git=config.tools.git, environ=self._environ
        )
        self.build_counter = build_counter or BuildCounter(self.settings.state_dir)
        self.history = history or DeploymentHistory(self.settings.state_dir)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan_builds(self, tag: str) -> list[BuildSpec]:
        """BuildSpecs for every configured artifact, tagged *tag*."""
        return [
            BuildSpec(
                artifact=a.name,
                image=a.image,
                context=self.config.resolve(a.context),
                dockerfile=self.config.resolve(a.resolved_dockerfile),
                tag=tag,
            )
            for a in self.config.artifacts
        ]

    def plan_services(self, tag: str) -> list[ServiceDeployment]:
        """Pending ServiceDeployments pointing at the images tagged *tag*."""
        images = {a.name: a.image for a in self.config.artifacts}
        return [
            ServiceDeployment(
                service=s.name,
                artifact_ref=f"{images[s.artifact]}:{tag}",
                container_name=s.container_name,
                image_env=s.image_env,
            )
            for s in self.config.services
        ]

    def deployment_configuration(self, tag: str) -> DeploymentConfiguration:
        """Launch configuration for *tag*, with secrets read from the environment.

        Raises ``DeploymentLaunchError`` if a required secret is missing.
        """
        deploy = self.config.deploy
        return DeploymentConfiguration(
            project_name=self.config.compose_project,
            compose_file=self.config.resolve(deploy.compose_file),
            working_dir=self.config.resolve(deploy.working_dir or self.config.base_dir),
            environment=dict(deploy.environment),
            secrets=collect_secrets(deploy.secret_env, self._environ),
            tag=tag,
            tag_env=deploy.tag_env,
            rebuild=deploy.rebuild,
        )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(
        self,
        *,
        build_id: int | None = None,
        timeout: float | None = None,
        notify: bool = True,
        cancel: CancelToken | None = None,
    ) -> PipelineRun:
        """Execute the pipeline and return the finalized PipelineRun.

        Parameters
        ----------
        build_id:
            Explicit build identifier (CI build number).  Falls back to
            ``settings.build_id`` and then to the local build counter.  An
            unwritable counter yields a timestamp id and a warning.
        timeout:
            Global deadline in seconds; overrides configuration and settings.
        notify:
            Send the report.  When False the Notify stage is recorded as skipped.
        cancel:
            Externally owned token (e.g. wired to SIGTERM).  When given it
            carries the deadline and *timeout* is ignored.
        """
        if cancel is None:
            deadline = timeout or self.config.timeout or self.settings.pipeline_timeout_seconds
            cancel = CancelToken(deadline)

        requested = build_id if build_id is not None else self.settings.build_id
        try:
            resolved_id = self.build_counter.next(requested)
        except OSError as exc:
            # Unpersisted id; the counter is left where it was.
            resolved_id = (
                requested if requested is not None else int(_utcnow().strftime("%Y%m%d%H%M%S"))
            )
            logger.warning("Build counter unavailable (%s); using build id %d", exc, resolved_id)
        run = PipelineRun(
            project=self.config.project_name,
            build_id=str(resolved_id),
            console_url=self.settings.console_url or None,
            build_url=self.settings.build_url or None,
        )
        logger.info("Run %s started: %s build %s", run.run_id, run.project, run.build_id)

        machine = StageMachine()
        status, reason = self._execute(run, machine, cancel)
        run.complete(status, reason)

        machine.transition(PipelineStage.NOTIFY)
        self._notify(run, notify)
        run.finalize()
        machine.transition(PipelineStage.DONE)

        log = logger.info if status == RunStatus.SUCCESS else logger.warning
        log(
            "Run %s finished: %s%s",
            run.run_id, status.value, f" ({reason})" if reason else "",
        )
        return run

    def _execute(
        self, run: PipelineRun, machine: StageMachine, cancel: CancelToken
    ) -> tuple[RunStatus, str]:
        handlers: list[tuple[PipelineStage, Callable[[PipelineRun, CancelToken], StageReport]]] = [
            (PipelineStage.CHECKOUT, self._checkout),
            (PipelineStage.BUILD, self._build),
            (PipelineStage.PACKAGE, self._package),
            (PipelineStage.DEPLOY, self._deploy),
            (PipelineStage.VERIFY, self._verify),
        ]
        degraded: list[str] = []

        for index, (stage, handler) in enumerate(handlers):
            if machine.current != stage:
                machine.transition(stage)
            remaining = [s for s, _ in handlers[index + 1:]]

            if cancel.cancelled:
                self._record(run, stage, _utcnow(), StageReport(
                    StageState.FAILED, error=f"not started ({cancel.reason})",
                ))
                self._skip(run, remaining, cancel.reason)
                return RunStatus.FAILED, self._cancel_reason(cancel)

            started = _utcnow()
            logger.info("Stage %s started", stage.value)
            try:
                report = handler(run, cancel)
            except OperationCancelled as exc:
                logger.error("Stage %s cancelled: %s", stage.value, exc)
                self._record(run, stage, started, StageReport(StageState.FAILED, error=str(exc)))
                self._skip(run, remaining, exc.reason)
                return RunStatus.FAILED, self._cancel_reason(cancel)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Stage %s crashed", stage.value)
                self._record(run, stage, started, StageReport(StageState.FAILED, error=str(exc)))
                self._skip(run, remaining, f"{stage.value} failed")
                return RunStatus.FAILED, f"{stage.value} failed: {exc}"

            self._record(run, stage, started, report)
            if report.state == StageState.FAILED:
                self._skip(run, remaining, f"{stage.value} failed")
                return RunStatus.FAILED, report.error or f"{stage.value} failed"
            if report.state == StageState.DEGRADED:
                degraded.append(report.detail or stage.value)

        if degraded:
            return RunStatus.PARTIAL_FAILURE, "; ".join(degraded)
        return RunStatus.SUCCESS, ""

    # ------------------------------------------------------------------
    # Stage handlers
    # ------------------------------------------------------------------

    def _checkout(self, run: PipelineRun, cancel: CancelToken) -> StageReport:
        checkout = self.config.checkout
        repo_dir = self.config.resolve(checkout.repo_dir)

        if checkout.command:
            try:
                result = self.runner.run(
                    checkout.command,
                    working_dir=self.config.base_dir,
                    timeout=checkout.timeout,
                    cancel=cancel,
                )
            except (ProcessTimeout, ProcessLaunchError) as exc:
                return StageReport(StageState.FAILED, error=f"checkout failed: {exc}")
            if not result.ok:
                return StageReport(
                    StageState.FAILED,
                    error=f"checkout exited {result.exit_code}: {result.output_tail(5)}",
                )

        commit = self.git.collect(repo_dir, cancel=cancel)
        run.set_commit(commit)
        if commit.is_empty:
            return StageReport(StageState.PASSED, detail="no git metadata")
        return StageReport(
            StageState.PASSED,
            detail=f"{commit.branch or 'detached'}@{commit.short_commit or '?'}",
        )

    def _build(self, run: PipelineRun, cancel: CancelToken) -> StageReport:
        steps = self.config.build_steps
        if not steps:
            return StageReport(StageState.PASSED, detail="no build steps")

        # Pre-flight every step before running anything.
        for step in steps:
            if step.require_script:
                working_dir = self.config.resolve(step.working_dir)
                manifest = (
                    self.config.resolve(step.manifest)
                    if step.manifest
                    else working_dir / "package.json"
                )
                try:
                    check_manifest_script(manifest, step.require_script)
                except MissingTestScript as exc:
                    return StageReport(StageState.FAILED, error=str(exc))

        test_failures: list[str] = []
        for step in steps:
            error: str | None = None
            try:
                result = self.runner.run(
                    step.command,
                    working_dir=self.config.resolve(step.working_dir),
                    timeout=step.timeout,
                    cancel=cancel,
                )
            except (ProcessTimeout, ProcessLaunchError) as exc:
                error = f"{step.name}: {exc}"
            else:
                if not result.ok:
                    error = f"{step.name} exited {result.exit_code}"

            if error is None:
                continue
            if step.kind == StepKind.TEST and not self.config.policy.test_failures_fatal:
                logger.warning("Test step failed (non-fatal): %s", error)
                test_failures.append(error)
                continue
            return StageReport(StageState.FAILED, error=error)

        if test_failures:
            return StageReport(
                StageState.DEGRADED, detail="tests failed: " + "; ".join(test_failures)
            )
        return StageReport(StageState.PASSED, detail=f"{len(steps)} step(s) passed")

    def _package(self, run: PipelineRun, cancel: CancelToken) -> StageReport:
        specs = self.plan_builds(run.build_id)
        if not specs:
            return StageReport(StageState.PASSED, detail="no artifacts")

        results = self.builder.build(specs, cancel=cancel)
        run.set_artifacts(results)
        cancel.raise_if_cancelled("package")

        failed = [r for r in results if not r.built]
        if not failed:
            return StageReport(StageState.PASSED, detail=f"{len(results)} artifact(s) built")

        failure = ArtifactBuildFailure(failed)
        if self.config.policy.partial_build_fatal or len(failed) == len(results):
            return StageReport(StageState.FAILED, error=str(failure))
        logger.warning("Continuing without failed artifacts: %s", failure)
        return StageReport(StageState.DEGRADED, detail=str(failure))

    def _deploy(self, run: PipelineRun, cancel: CancelToken) -> StageReport:
        planned = self.plan_services(run.build_id)
        if not planned:
            return StageReport(StageState.PASSED, detail="no services")

        built = {r.artifact for r in run.artifacts if r.built}
        artifact_of = {s.name: s.artifact for s in self.config.services}
        deployable = [s for s in planned if artifact_of[s.service] in built]
        missing = [
            s.with_state(ServiceState.FAILED)
            for s in planned
            if artifact_of[s.service] not in built
        ]
        if not deployable:
            run.set_services(missing)
            return StageReport(StageState.FAILED, error="no service has a built artifact")

        try:
            configuration = self.deployment_configuration(run.build_id)
        except DeploymentLaunchError as exc:
            run.set_services([s.with_state(ServiceState.FAILED) for s in planned])
            return StageReport(StageState.FAILED, error=str(exc))

        try:
            deployed = self.deployer.deploy(deployable, configuration, cancel=cancel)
        except DeploymentLaunchError as exc:
            logger.error("Deployment launch failed: %s", exc)
            services = [s.with_state(ServiceState.FAILED) for s in deployable]
            detail = "launch failed"
            if self.config.policy.rollback_on_deploy_failure:
                services, detail = self._rollback(run, deployable, cancel)
            run.set_services(services + missing)
            return StageReport(StageState.FAILED, detail=detail, error=str(exc))

        run.set_services(deployed + missing)
        if missing:
            names = ", ".join(s.service for s in missing)
            return StageReport(StageState.DEGRADED, detail=f"not deployed: {names}")
        return StageReport(StageState.PASSED, detail=f"{len(deployed)} service(s) starting")

    def _verify(self, run: PipelineRun, cancel: CancelToken) -> StageReport:
        launched = {s.service for s in run.services if s.state == ServiceState.STARTING}
        specs: list[HealthCheckSpec] = [
            c for c in self.config.health_checks if c.service in launched
        ]
        if not specs:
            self._record_success(run)
            return StageReport(StageState.PASSED, detail="no health checks")

        results = self.verifier.verify(specs, cancel=cancel)
        run.set_health(results)
        run.set_services(self.verifier.reconcile(run.services, results))

        unhealthy = [r for r in results.values() if not r.healthy]
        if not unhealthy:
            self._record_success(run)
            return StageReport(StageState.PASSED, detail=f"{len(results)} service(s) healthy")

        problem = HealthCheckUnhealthy(unhealthy)
        if self.config.policy.health_failures_fatal:
            deployed = [s for s in run.services if s.service in launched]
            services, detail = self._rollback(run, deployed, cancel)
            others = [s for s in run.services if s.service not in launched]
            run.set_services(services + others)
            return StageReport(StageState.FAILED, detail=detail, error=str(problem))
        return StageReport(StageState.DEGRADED, detail=str(problem))

    # ------------------------------------------------------------------
    # Notify
    # ------------------------------------------------------------------

    def _notify(self, run: PipelineRun, enabled: bool) -> None:
        started = _utcnow()
        if not enabled:
            self._record(run, PipelineStage.NOTIFY, started, StageReport(
                StageState.SKIPPED, detail="notifications disabled",
            ))
            return

        outcome = self.reporter.report(run)
        # Delivery problems never fail the run.
        state = StageState.PASSED if outcome == DeliveryOutcome.DELIVERED else StageState.DEGRADED
        self._record(run, PipelineStage.NOTIFY, started, StageReport(
            state, detail=f"report {outcome.value}",
        ))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _rollback(
        self,
        run: PipelineRun,
        services: list[ServiceDeployment],
        cancel: CancelToken,
    ) -> tuple[list[ServiceDeployment], str]:
        previous = self.history.last_successful(self.config.compose_project)
        if previous == run.build_id:
            previous = None
        try:
            configuration = self.deployment_configuration(run.build_id)
            restored = self.deployer.rollback(services, configuration, previous, cancel=cancel)
        except DeploymentLaunchError as exc:
            logger.error("Rollback failed: %s", exc)
            return [s.with_state(ServiceState.FAILED) for s in services], f"rollback failed: {exc}"
        if previous:
            return restored, f"rolled back to {previous}"
        return restored, "no previous deployment; services stopped"

    def _record_success(self, run: PipelineRun) -> None:
        if run.has_degraded_stage():
            return
        try:
            self.history.record_success(self.config.compose_project, run.build_id)
        except OSError as exc:
            logger.warning(
                "Could not record %s as last good deployment: %s", run.build_id, exc
            )

    @staticmethod
    def _record(
        run: PipelineRun, stage: PipelineStage, started: datetime, report: StageReport
    ) -> None:
        run.record_stage(
            StageOutcome(
                stage=stage,
                state=report.state,
                started_at=started,
                ended_at=_utcnow(),
                detail=report.detail,
                error=report.error,
            )
        )

    @staticmethod
    def _skip(run: PipelineRun, stages: list[PipelineStage], reason: str) -> None:
        for stage in stages:
            now = _utcnow()
            run.record_stage(
                StageOutcome(
                    stage=stage,
                    state=StageState.SKIPPED,
                    started_at=now,
                    ended_at=now,
                    detail=f"skipped: {reason}",
                )
            )

    @staticmethod
    def _cancel_reason(cancel: CancelToken) -> str:
        return TIMEOUT_REASON if cancel.expired else "Cancelled"
