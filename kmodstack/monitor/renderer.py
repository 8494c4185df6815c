"""Rich terminal renderer for plans, residency and lifecycle results.

Color scheme
------------
- green     : LOADED / UNLOADED / resident
- red       : FAILED
- yellow    : BUSY / LOADING / UNLOADING
- dim       : NOT_LOADED / absent / host-managed
"""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from kmodstack.core.module_graph import ModuleGraph
from kmodstack.models.kernel import Residency
from kmodstack.models.modules import ModuleState
from kmodstack.models.package import PackageManifest
from kmodstack.models.results import ModuleOutcome

_STATE_ICONS: dict[ModuleState, str] = {
    ModuleState.NOT_LOADED: "[dim]NOT LOADED[/dim]",
    ModuleState.LOADING: "[yellow]LOADING[/yellow]",
    ModuleState.LOADED: "[green]LOADED[/green]",
    ModuleState.FAILED: "[bold red]FAILED[/bold red]",
    ModuleState.UNLOADING: "[yellow]UNLOADING[/yellow]",
    ModuleState.UNLOADED: "[green]UNLOADED[/green]",
    ModuleState.BUSY: "[bold yellow]BUSY[/bold yellow]",
}


def _residency_label(r: Residency) -> str:
    if r.builtin:
        return "[green]built-in[/green]"
    return "[green]yes[/green]" if r.resident else "[dim]no[/dim]"


class StackRenderer:
    """Renders stack information as Rich tables.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def plan_table(self, graph: ModuleGraph) -> Table:
        table = Table(title="Load Order")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Module", style="cyan")
        table.add_column("Description")
        table.add_column("Depends on")
        table.add_column("Owner")
        for i, module in enumerate(graph.topological_order().modules, start=1):
            table.add_row(
                str(i),
                module.name,
                module.label,
                ", ".join(module.dependencies) or "-",
                "[dim]host[/dim]" if module.external else "stack",
            )
        return table

    def status_table(self, residency: list[Residency], graph: ModuleGraph) -> Table:
        table = Table(title="Kernel Residency")
        table.add_column("Module", style="cyan")
        table.add_column("Resident", justify="center")
        table.add_column("Refcount", justify="right")
        table.add_column("Holders")
        for r, name in zip(residency, graph.module_names):
            label = name if not graph.get(name).external else f"[dim]{name}[/dim]"
            table.add_row(
                label,
                _residency_label(r),
                str(r.refcount) if r.resident else "-",
                ", ".join(r.holders) or "-",
            )
        return table

    def outcome_table(self, title: str, outcomes: list[ModuleOutcome]) -> Table:
        table = Table(title=title)
        table.add_column("Module", style="cyan")
        table.add_column("State", justify="center")
        table.add_column("Primitive")
        table.add_column("Detail")
        for o in outcomes:
            detail = o.detail or (" ".join(o.parameters) if o.parameters else "")
            table.add_row(o.module, _STATE_ICONS[o.state], o.primitive, detail)
        return table

    def manifest_table(self, manifest: PackageManifest) -> Table:
        table = Table(title="Package Contents")
        table.add_column("Module", style="cyan")
        table.add_column("File")
        table.add_column("Signed", justify="center")
        table.add_column("SHA-256")
        for e in manifest.entries:
            table.add_row(
                e.module,
                e.file_name,
                "[green]yes[/green]" if e.signed else "[dim]no[/dim]",
                e.sha256[:16],
            )
        return table

    # ------------------------------------------------------------------
    # Convenience printers
    # ------------------------------------------------------------------

    def print_plan(self, graph: ModuleGraph) -> None:
        self.console.print(self.plan_table(graph))
        unload = " -> ".join(graph.reverse_order().names) or "(nothing)"
        self.console.print(f"[bold]Unload order:[/bold] {unload}")

    def print_status(self, residency: list[Residency], graph: ModuleGraph) -> None:
        self.console.print(self.status_table(residency, graph))

    def print_outcomes(self, title: str, outcomes: list[ModuleOutcome]) -> None:
        if outcomes:
            self.console.print(self.outcome_table(title, outcomes))

    def print_manifest(self, manifest: PackageManifest) -> None:
        self.console.print(self.manifest_table(manifest))
