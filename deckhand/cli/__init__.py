"""Deckhand CLI — Typer-based command-line interface.

Provides the ``deckhand`` command with subcommands for running the
pipeline, re-checking service health and previewing a run plan.

All output uses Rich for formatted terminal display.
"""
