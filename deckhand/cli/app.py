"""Main Typer application — imports and registers all CLI commands.

Entry point: ``deckhand`` (configured via pyproject.toml console_scripts).
"""

from __future__ import annotations

import typer

from deckhand.cli.commands.plan import plan_cmd
from deckhand.cli.commands.run import run_cmd
from deckhand.cli.commands.verify import verify_cmd

app = typer.Typer(
    name="deckhand",
    help="Deckhand: build, deploy and health-check a compose project.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

app.command(name="run", help="Run the full pipeline.")(run_cmd)
app.command(name="verify", help="Poll the configured health checks.")(verify_cmd)
app.command(name="plan", help="Show what a run would do.")(plan_cmd)


@app.command(name="version", help="Print the Deckhand version.")
def version_cmd() -> None:
    from deckhand import __version__

    typer.echo(__version__)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
