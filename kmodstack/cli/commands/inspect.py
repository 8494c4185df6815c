"""``kmodstack plan`` and ``kmodstack status`` — read-only views."""

from __future__ import annotations

import typer

from kmodstack.cli import common
from kmodstack.monitor.renderer import StackRenderer


def plan_cmd(
    enable_peermem: bool = typer.Option(
        None,
        "--peermem/--no-peermem",
        help="Include the GPUDirect RDMA peer-memory module.",
    ),
) -> None:
    """Show the load order and unload order of the driver stack."""
    config = common.load_config(enable_peermem=enable_peermem)
    orchestrator = common.build_orchestrator(config)
    StackRenderer(console=common.console).print_plan(orchestrator.graph)


def status_cmd(
    enable_peermem: bool = typer.Option(
        None,
        "--peermem/--no-peermem",
        help="Include the GPUDirect RDMA peer-memory module.",
    ),
) -> None:
    """Show which driver modules are resident and their reference counts."""
    config = common.load_config(enable_peermem=enable_peermem)
    orchestrator = common.build_orchestrator(config)
    StackRenderer(console=common.console).print_status(
        orchestrator.status(), orchestrator.graph
    )
