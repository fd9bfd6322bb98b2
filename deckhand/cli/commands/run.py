"""``deckhand run`` — execute the full pipeline.

Runs checkout, build, package, deploy, verify and notify, then prints
the run summary.  SIGINT and SIGTERM cancel the run: the current stage
stops, the rest are skipped and the report is still sent.
"""

from __future__ import annotations

import signal
from pathlib import Path

import typer

from deckhand.cli.common import configure_logging, console, load_config_or_exit
from deckhand.config import DeckhandSettings
from deckhand.core.coordinator import PipelineCoordinator
from deckhand.core.process import CancelToken
from deckhand.models.stages import RunStatus
from deckhand.monitor.renderer import RunRenderer


def run_cmd(
    config_path: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Pipeline config (deckhand.toml or pyproject.toml).  Discovered in the current directory if omitted.",
    ),
    build_id: int = typer.Option(
        None,
        "--build-id",
        "-b",
        help="Build number to tag images with.  Defaults to DECKHAND_BUILD_ID or the local counter.",
    ),
    timeout: float = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Global deadline for the whole run, in seconds.",
    ),
    notify: bool = typer.Option(
        True,
        "--notify/--no-notify",
        help="Send the run report to the configured sinks.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Build, deploy and verify the project, then report the result.

    Exit code is 0 for success and partial failure, 1 for failure and 2
    for configuration errors.
    """
    settings = DeckhandSettings()
    configure_logging(settings, verbose)
    config = load_config_or_exit(config_path)

    deadline = timeout or config.timeout or settings.pipeline_timeout_seconds
    token = CancelToken(deadline)

    def _cancel(signum: int, _frame: object) -> None:
        console.print(f"[yellow]Received {signal.Signals(signum).name}; cancelling run[/yellow]")
        token.cancel()

    previous = {
        sig: signal.signal(sig, _cancel) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        coordinator = PipelineCoordinator(config, settings=settings)
        run = coordinator.run(build_id=build_id, notify=notify, cancel=token)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    RunRenderer(console=console).print_run(run)
    if run.status is RunStatus.PARTIAL_FAILURE:
        console.print("[yellow]Run completed with degraded stages or unhealthy services.[/yellow]")
    raise typer.Exit(code=run.status.exit_code)
