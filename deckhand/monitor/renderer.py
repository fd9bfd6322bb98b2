"""Rich terminal renderer for Deckhand runs.

Turns a finished ``PipelineRun`` (or a run plan) into Rich renderables
with color-coded stage and service states.

Color scheme
------------
- green     : PASSED / running / healthy
- red       : FAILED / unhealthy
- yellow    : DEGRADED / starting
- dim       : SKIPPED / pending
"""

from __future__ import annotations

from collections.abc import Sequence

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from deckhand.models.artifacts import BuildSpec
from deckhand.models.deployments import ServiceDeployment, ServiceState
from deckhand.models.health import HealthCheckSpec, HealthResult
from deckhand.models.run import PipelineRun
from deckhand.models.stages import RunStatus, StageState
from deckhand.notify.formatting import STATUS_LABELS, format_duration

# ---------------------------------------------------------------------------
# State -> Rich markup
# ---------------------------------------------------------------------------

_STAGE_ICONS: dict[StageState, str] = {
    StageState.PASSED: "[green]PASSED[/green]",
    StageState.FAILED: "[bold red]FAILED[/bold red]",
    StageState.DEGRADED: "[yellow]DEGRADED[/yellow]",
    StageState.SKIPPED: "[dim]SKIPPED[/dim]",
}

_SERVICE_STYLES: dict[ServiceState, str] = {
    ServiceState.RUNNING: "green",
    ServiceState.STARTING: "yellow",
    ServiceState.UNHEALTHY: "bold red",
    ServiceState.FAILED: "bold red",
    ServiceState.STOPPED: "dim",
    ServiceState.PENDING: "dim",
}

_STATUS_BORDERS: dict[RunStatus, str] = {
    RunStatus.SUCCESS: "green",
    RunStatus.PARTIAL_FAILURE: "yellow",
    RunStatus.FAILED: "red",
    RunStatus.RUNNING: "blue",
}


class RunRenderer:
    """Renders pipeline runs and plans as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Run summary
    # ------------------------------------------------------------------

    def render_run(self, run: PipelineRun) -> Panel:
        """Render a PipelineRun as a Panel with stage and service tables."""
        parts: list = [self._stage_table(run)]
        if run.services:
            parts.extend([Text(""), self._service_table(run.services, run.health)])

        summary = [
            f"[bold]Run:[/bold] {run.run_id}",
            f"[bold]Build:[/bold] #{run.build_id}",
            f"[bold]Duration:[/bold] {format_duration(run.duration_seconds)}",
        ]
        if run.commit.short_commit:
            ref = f"{run.commit.branch}@" if run.commit.branch else ""
            summary.append(f"[bold]Commit:[/bold] {ref}{run.commit.short_commit}")
        built = sum(1 for a in run.artifacts if a.built)
        if run.artifacts:
            summary.append(f"[bold]Artifacts:[/bold] {built}/{len(run.artifacts)}")
        parts.extend([Text(""), Text.from_markup("  |  ".join(summary))])

        if run.reason:
            parts.append(Text(f"Reason: {run.reason}", style="bold"))

        border = _STATUS_BORDERS.get(run.status, "blue")
        return Panel(
            Group(*parts),
            title=f"[bold]{run.project}[/bold] [{border}]{STATUS_LABELS[run.status]}[/{border}]",
            border_style=border,
            padding=(1, 2),
        )

    def _stage_table(self, run: PipelineRun) -> Table:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Stage", min_width=10)
        table.add_column("State", min_width=10, justify="center")
        table.add_column("Time", justify="right", width=9)
        table.add_column("Details", min_width=20)

        for outcome in run.stages:
            details: list[str] = []
            if outcome.detail:
                details.append(outcome.detail)
            if outcome.error:
                details.append(f"[red]{outcome.error}[/red]")
            table.add_row(
                outcome.stage.value,
                _STAGE_ICONS.get(outcome.state, outcome.state.value),
                format_duration(outcome.duration_seconds),
                " | ".join(details) if details else "[dim]-[/dim]",
            )
        return table

    @staticmethod
    def _service_table(
        services: Sequence[ServiceDeployment],
        health: dict[str, HealthResult],
    ) -> Table:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Service")
        table.add_column("Image")
        table.add_column("State", justify="center")
        table.add_column("Health")

        for service in services:
            style = _SERVICE_STYLES.get(service.state, "")
            result = health.get(service.service)
            if result is None:
                check = "[dim]-[/dim]"
            elif result.healthy:
                check = f"[green]healthy[/green] ({result.attempts} attempt(s))"
            else:
                check = f"[red]{result.last_error or 'unhealthy'}[/red]"
            table.add_row(
                service.service,
                service.artifact_ref,
                f"[{style}]{service.state.value}[/{style}]" if style else service.state.value,
                check,
            )
        return table

    # ------------------------------------------------------------------
    # Plan and health
    # ------------------------------------------------------------------

    def render_plan(
        self,
        builds: Sequence[BuildSpec],
        services: Sequence[ServiceDeployment],
        checks: Sequence[HealthCheckSpec],
    ) -> Group:
        """Render what a run would build, launch and check."""
        build_table = Table(title="Artifacts", header_style="bold cyan", expand=True)
        build_table.add_column("Artifact", style="cyan")
        build_table.add_column("Image")
        build_table.add_column("Context")
        build_table.add_column("Dockerfile")
        for spec in builds:
            build_table.add_row(
                spec.artifact, spec.version_ref, str(spec.context), str(spec.dockerfile)
            )

        service_table = Table(title="Services", header_style="bold cyan", expand=True)
        service_table.add_column("Service", style="cyan")
        service_table.add_column("Image")
        service_table.add_column("Container")
        for service in services:
            service_table.add_row(
                service.service,
                service.artifact_ref,
                service.container_name or "[dim]-[/dim]",
            )

        check_table = Table(title="Health checks", header_style="bold cyan", expand=True)
        check_table.add_column("Service", style="cyan")
        check_table.add_column("URL")
        check_table.add_column("Expect")
        check_table.add_column("Budget", justify="right")
        for check in checks:
            expect = ", ".join(str(code) for code in check.expected_status) or "2xx"
            if check.body_contains:
                expect += f" + {check.body_contains!r}"
            check_table.add_row(
                check.service,
                check.url,
                expect,
                f"{check.max_wait:g}s every {check.poll_interval:g}s",
            )

        return Group(build_table, service_table, check_table)

    def render_health(self, results: dict[str, HealthResult]) -> Table:
        """Render standalone health results (``deckhand verify``)."""
        table = Table(title="Health", header_style="bold cyan", expand=True)
        table.add_column("Service", style="cyan")
        table.add_column("Outcome", justify="center")
        table.add_column("Attempts", justify="right")
        table.add_column("Last status", justify="right")
        table.add_column("Elapsed", justify="right")
        table.add_column("Error")

        for service, result in results.items():
            outcome = (
                "[green]healthy[/green]" if result.healthy else "[bold red]unhealthy[/bold red]"
            )
            table.add_row(
                service,
                outcome,
                str(result.attempts),
                str(result.last_status_code) if result.last_status_code is not None else "-",
                format_duration(result.elapsed_seconds),
                result.last_error or "",
            )
        return table

    # ------------------------------------------------------------------
    # Standalone print
    # ------------------------------------------------------------------

    def print_run(self, run: PipelineRun) -> None:
        self.console.print(self.render_run(run))

    def print_plan(
        self,
        builds: Sequence[BuildSpec],
        services: Sequence[ServiceDeployment],
        checks: Sequence[HealthCheckSpec],
    ) -> None:
        self.console.print(self.render_plan(builds, services, checks))

    def print_health(self, results: dict[str, HealthResult]) -> None:
        self.console.print(self.render_health(results))
