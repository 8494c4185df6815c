"""Shared CLI plumbing: console, exit codes, config and logging setup."""

from __future__ import annotations

import logging

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from kmodstack.config import StackConfig
from kmodstack.core.orchestrator import StackOrchestrator, wait_for_termination

console = Console(stderr=True)

EXIT_OK = 0
EXIT_BUILD_FAILED = 3
EXIT_LOAD_FAILED = 4
EXIT_UNLOAD_FAILED = 5
EXIT_CONFIG_FAILED = 6


def setup_logging(level: str) -> None:
    """Route all ``kmodstack`` loggers through a RichHandler."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def load_config(**overrides: object) -> StackConfig:
    """Read ``StackConfig`` from the environment, exiting on invalid values."""
    try:
        return StackConfig(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as exc:
        console.print(f"[bold red]Invalid configuration:[/bold red]\n{exc}")
        raise typer.Exit(code=EXIT_CONFIG_FAILED)


def build_orchestrator(config: StackConfig) -> StackOrchestrator:
    """Construct the orchestrator for a CLI invocation."""
    return StackOrchestrator(config)
