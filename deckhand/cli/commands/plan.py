"""``deckhand plan`` — show what a run would build, launch and check."""

from __future__ import annotations

from pathlib import Path

import typer

from deckhand.cli.common import console, load_config_or_exit
from deckhand.config import DeckhandSettings
from deckhand.core.coordinator import PipelineCoordinator
from deckhand.core.state import BuildCounter
from deckhand.monitor.renderer import RunRenderer


def plan_cmd(
    config_path: Path = typer.Option(
        None, "--config", "-c", help="Pipeline config file."
    ),
    build_id: int = typer.Option(
        None, "--build-id", "-b", help="Build number to plan for."
    ),
) -> None:
    """Print the build specs, services and health checks without executing anything."""
    settings = DeckhandSettings()
    config = load_config_or_exit(config_path)

    if build_id is None:
        build_id = settings.build_id or BuildCounter(settings.state_dir).last + 1
    tag = str(build_id)

    coordinator = PipelineCoordinator(config, settings=settings)
    console.print(
        f"[bold]{config.project_name}[/bold] build [cyan]#{tag}[/cyan] "
        f"(compose project {config.compose_project})"
    )
    RunRenderer(console=console).print_plan(
        coordinator.plan_builds(tag),
        coordinator.plan_services(tag),
        config.health_checks,
    )
