"""``kmodstack run|load|unload`` — bring the driver stack up and down.

``run`` is the container entrypoint: load the stack, block until SIGTERM
or SIGINT, then unload it.  A load failure exits immediately with
``EXIT_LOAD_FAILED`` and leaves already-loaded modules resident for
inspection; clear them with ``kmodstack unload`` once diagnosed.
"""

from __future__ import annotations

import typer

from kmodstack.cli import common
from kmodstack.core.load_orchestrator import LoadError
from kmodstack.core.orchestrator import StackOrchestrator
from kmodstack.core.unload_orchestrator import UnloadError
from kmodstack.models.results import UnloadResult
from kmodstack.monitor.renderer import StackRenderer


def _bring_up(orchestrator: StackOrchestrator, renderer: StackRenderer) -> None:
    try:
        result = orchestrator.bring_up()
    except LoadError as exc:
        renderer.print_outcomes("Load", exc.result.outcomes)
        common.console.print(f"[bold red]Load failed:[/bold red] {exc}")
        common.console.print(
            "[dim]Loaded modules were left resident. "
            "Run 'kmodstack unload' after diagnosing the failure.[/dim]"
        )
        raise typer.Exit(code=common.EXIT_LOAD_FAILED)
    renderer.print_outcomes("Load", result.outcomes)


def _tear_down(orchestrator: StackOrchestrator, renderer: StackRenderer) -> UnloadResult:
    try:
        result = orchestrator.tear_down()
    except UnloadError as exc:
        renderer.print_outcomes("Unload", exc.result.outcomes)
        common.console.print(f"[bold red]Unload incomplete:[/bold red] {exc}")
        raise typer.Exit(code=common.EXIT_UNLOAD_FAILED)
    renderer.print_outcomes("Unload", result.outcomes)
    return result


def run_cmd(
    enable_peermem: bool = typer.Option(
        None,
        "--peermem/--no-peermem",
        help="Include the GPUDirect RDMA peer-memory module.",
    ),
) -> None:
    """Load the driver stack, wait for a termination signal, then unload it."""
    config = common.load_config(enable_peermem=enable_peermem)
    orchestrator = common.build_orchestrator(config)
    renderer = StackRenderer(console=common.console)

    _bring_up(orchestrator, renderer)
    common.console.print("[bold green]Driver stack loaded.[/bold green] Waiting for SIGTERM...")
    common.wait_for_termination()
    _tear_down(orchestrator, renderer)
    common.console.print("[bold green]Driver stack unloaded.[/bold green]")


def load_cmd(
    enable_peermem: bool = typer.Option(
        None,
        "--peermem/--no-peermem",
        help="Include the GPUDirect RDMA peer-memory module.",
    ),
) -> None:
    """Load the driver stack in dependency order and return."""
    config = common.load_config(enable_peermem=enable_peermem)
    orchestrator = common.build_orchestrator(config)
    _bring_up(orchestrator, StackRenderer(console=common.console))


def unload_cmd(
    enable_peermem: bool = typer.Option(
        None,
        "--peermem/--no-peermem",
        help="Include the GPUDirect RDMA peer-memory module.",
    ),
) -> None:
    """Unload every resident driver module in reverse dependency order."""
    config = common.load_config(enable_peermem=enable_peermem)
    orchestrator = common.build_orchestrator(config)
    _tear_down(orchestrator, StackRenderer(console=common.console))
