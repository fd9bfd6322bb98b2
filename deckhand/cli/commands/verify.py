"""``deckhand verify`` — poll the configured health checks only.

Useful after a manual deployment or to re-check a running project.
"""

from __future__ import annotations

from pathlib import Path

import typer

from deckhand.cli.common import configure_logging, console, err_console, load_config_or_exit
from deckhand.config import DeckhandSettings
from deckhand.core.health import HealthVerifier
from deckhand.core.process import CancelToken, OperationCancelled
from deckhand.monitor.renderer import RunRenderer


def verify_cmd(
    config_path: Path = typer.Option(
        None, "--config", "-c", help="Pipeline config file."
    ),
    service: list[str] = typer.Option(
        None, "--service", "-s", help="Only check these services (repeatable)."
    ),
    settle: float = typer.Option(
        0.0, "--settle", help="Seconds to wait before the first poll."
    ),
    timeout: float = typer.Option(
        None, "--timeout", "-t", help="Overall deadline in seconds."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Poll every configured health endpoint and print the verdicts.

    Exits 1 if any service is unhealthy.
    """
    settings = DeckhandSettings()
    configure_logging(settings, verbose)
    config = load_config_or_exit(config_path)

    checks = [c for c in config.health_checks if not service or c.service in service]
    if not checks:
        console.print("[dim]No health checks configured.[/dim]")
        raise typer.Exit(code=0)

    verifier = HealthVerifier(settle_delay=settle)
    try:
        results = verifier.verify(checks, cancel=CancelToken(timeout))
    except OperationCancelled as exc:
        err_console.print(f"[bold red]Health verification stopped:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc

    RunRenderer(console=console).print_health(results)
    if not all(r.healthy for r in results.values()):
        raise typer.Exit(code=1)
