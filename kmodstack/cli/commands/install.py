"""``kmodstack install`` — sign (optionally) and package the compiled modules.

No module is loaded.  Exits with ``EXIT_BUILD_FAILED`` when signing or
packaging fails, in which case no package file is left behind.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.panel import Panel

from kmodstack.cli import common
from kmodstack.config import SigningConfigError
from kmodstack.core.module_graph import UnknownModuleError
from kmodstack.core.packaging import PackagingError
from kmodstack.core.signing import SigningError
from kmodstack.monitor.renderer import StackRenderer


def install_cmd(
    artifact_dir: Path = typer.Option(
        None,
        "--artifacts",
        "-a",
        help="Directory holding the compiled <module>.ko files.",
    ),
    output: Path = typer.Option(
        None,
        "--output",
        "-o",
        help="Path of the package file to write.",
    ),
    kernel_version: str = typer.Option(
        None,
        "--kernel-version",
        "-k",
        help="Kernel version recorded in the package manifest.",
    ),
) -> None:
    """Build the precompiled package from compiled module artifacts."""
    config = common.load_config(
        artifact_dir=artifact_dir,
        package_path=output,
        kernel_version=kernel_version,
    )
    console = common.console
    renderer = StackRenderer(console=console)

    try:
        orchestrator = common.build_orchestrator(config)
        package = orchestrator.install()
    except SigningConfigError as exc:
        console.print(f"[bold red]Signing configuration error:[/bold red] {exc}")
        raise typer.Exit(code=common.EXIT_CONFIG_FAILED)
    except SigningError as exc:
        console.print(f"[bold red]Signing failed:[/bold red] {exc}")
        raise typer.Exit(code=common.EXIT_BUILD_FAILED)
    except (PackagingError, UnknownModuleError) as exc:
        console.print(f"[bold red]Packaging failed:[/bold red] {exc}")
        raise typer.Exit(code=common.EXIT_BUILD_FAILED)

    if orchestrator.manifest is not None:
        renderer.print_manifest(orchestrator.manifest)
    console.print(
        Panel(
            f"[bold green]Package written:[/bold green] {package}",
            title="[bold]Install[/bold]",
            border_style="green",
        )
    )
