"""Helpers shared by the CLI commands: config discovery and logging setup."""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from deckhand.config import DeckhandSettings
from deckhand.models.config import ConfigError, PipelineConfig, load_pipeline_config

CONFIG_ERROR_EXIT = 2
CONFIG_CANDIDATES = ("deckhand.toml", "pyproject.toml")

console = Console()
err_console = Console(stderr=True)


def find_config(path: Path | None, search_dir: Path | None = None) -> Path:
    """Return *path*, or the first config candidate found in *search_dir*.

    Raises ``ConfigError`` if nothing is found.
    """
    if path is not None:
        return path
    root = search_dir or Path.cwd()
    for name in CONFIG_CANDIDATES:
        candidate = root / name
        if candidate.is_file():
            return candidate
    raise ConfigError(
        f"No deckhand.toml or pyproject.toml found in {root}; pass --config"
    )


def load_config_or_exit(path: Path | None) -> PipelineConfig:
    """Load the pipeline config, exiting with code 2 on any config problem."""
    try:
        return load_pipeline_config(find_config(path))
    except ConfigError as exc:
        err_console.print(f"[bold red]Configuration error:[/bold red] {exc}")
        raise typer.Exit(code=CONFIG_ERROR_EXIT) from exc


def configure_logging(settings: DeckhandSettings, verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else settings.log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
    )
    # httpx logs each request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
