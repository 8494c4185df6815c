"""Main Typer application — imports and registers all CLI commands.

Entry point: ``kmodstack`` (configured via pyproject.toml console_scripts).
"""

from __future__ import annotations

import typer

from kmodstack.cli import common
from kmodstack.cli.commands.inspect import plan_cmd, status_cmd
from kmodstack.cli.commands.install import install_cmd
from kmodstack.cli.commands.keygen import keygen_cmd
from kmodstack.cli.commands.lifecycle import load_cmd, run_cmd, unload_cmd

app = typer.Typer(
    name="kmodstack",
    help="kmodstack: GPU kernel-driver stack lifecycle for driver containers.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None,
        "--log-level",
        "-L",
        help="Logging level (defaults to KMODSTACK_LOG_LEVEL or INFO).",
    ),
) -> None:
    """Configure logging before any command runs."""
    common.setup_logging(log_level or common.load_config().log_level)


# Register subcommands
app.command(name="install", help="Sign (optionally) and package compiled modules.")(install_cmd)
app.command(name="run", help="Load the stack, wait for SIGTERM, then unload it.")(run_cmd)
app.command(name="load", help="Load the stack in dependency order.")(load_cmd)
app.command(name="unload", help="Unload resident modules in reverse order.")(unload_cmd)
app.command(name="plan", help="Show load and unload order.")(plan_cmd)
app.command(name="status", help="Show kernel residency of every module.")(status_cmd)
app.command(name="keygen", help="Generate an Ed25519 signing key pair.")(keygen_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
