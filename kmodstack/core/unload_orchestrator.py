"""Reverse walk of the unload plan, best-effort.

Lifecycle per module::

    (absent)  -> skipped, stays NOT_LOADED
    (built in) -> skipped, stays NOT_LOADED
    LOADED -> UNLOADING -> UNLOADED
    LOADED -> BUSY                     (holders present; not attempted)
              UNLOADING -> BUSY        (unload primitive reported busy)
              UNLOADING -> FAILED      (any other unload failure)

A busy or failed module never stops the walk: every other eligible module
is still attempted, and the failures are raised together at the end.
Running the walk again on an empty stack is a no-op.
"""

from __future__ import annotations

import logging

from kmodstack.bridge.kernel import ModuleUnloader, ResidencyChecker
from kmodstack.core.module_graph import ModuleGraph
from kmodstack.core.module_machine import ModuleMachine
from kmodstack.models.kernel import UnloadStatus
from kmodstack.models.modules import ModuleDefinition, ModuleState
from kmodstack.models.plans import UnloadPlan
from kmodstack.models.results import ModuleOutcome, UnloadResult

logger = logging.getLogger(__name__)


class UnloadError(RuntimeError):
    """Raised after an unload walk in which one or more modules stayed resident.

    ``failures`` lists every busy or failed module; ``result`` holds the
    full outcome, including modules that did unload.
    """

    def __init__(self, result: UnloadResult) -> None:
        self.result = result
        self.failures = result.failures
        parts = [
            f"{f.module}: {f.primitive} failed: {f.detail}" for f in self.failures
        ]
        super().__init__(
            f"{len(self.failures)} module(s) could not be unloaded: " + "; ".join(parts)
        )

    @property
    def modules(self) -> list[str]:
        return [f.module for f in self.failures]


class UnloadOrchestrator:
    """Unloads resident modules in reverse dependency order.

    Parameters
    ----------
    graph:
        The module graph the plan was derived from.
    unloader:
        The module-unload primitive.
    residency:
        Queried for each module immediately before unloading it.
    """

    def __init__(
        self,
        graph: ModuleGraph,
        unloader: ModuleUnloader,
        residency: ResidencyChecker,
    ) -> None:
        self._graph = graph
        self._unloader = unloader
        self._residency = residency

    def unload_all(self, plan: UnloadPlan) -> UnloadResult:
        """Unload every resident module in *plan*.

        Raises ``UnloadError`` after the walk if any module was busy or
        failed to unload; returns the ``UnloadResult`` otherwise.
        """
        machine = ModuleMachine(self._graph)
        outcomes: list[ModuleOutcome] = []

        logger.info("Unloading %d modules: %s", len(plan), " -> ".join(plan.names))
        for module in plan.modules:
            if module.external:
                # Host-managed; never unloaded by this stack.
                continue
            outcomes.append(self._unload_one(module, machine))

        result = UnloadResult(outcomes=outcomes, transitions=machine.history)
        if not result.ok:
            raise UnloadError(result)
        logger.info(
            "Unload complete: %d unloaded, %d already absent",
            len(result.unloaded), len(result.skipped),
        )
        return result

    def _unload_one(self, module: ModuleDefinition, machine: ModuleMachine) -> ModuleOutcome:
        name = module.name
        residency = self._residency.residency(name)
        if not residency.resident:
            logger.debug("%s is not resident; skipping", name)
            return ModuleOutcome(
                module=name,
                state=ModuleState.NOT_LOADED,
                primitive="residency check",
                detail="not resident",
            )
        if residency.builtin:
            logger.info("%s is built into the kernel; not unloading", name)
            return ModuleOutcome(
                module=name,
                state=ModuleState.NOT_LOADED,
                primitive="residency check",
                detail="built into the kernel",
            )

        machine.mark_resident(name)
        if residency.in_use:
            holders = ", ".join(residency.holders) or "unknown holders"
            detail = f"refcount {residency.refcount} ({holders})"
            machine.transition(name, ModuleState.BUSY, detail=detail)
            logger.warning("%s is in use: %s", name, detail)
            return ModuleOutcome(
                module=name,
                state=ModuleState.BUSY,
                primitive="residency check",
                detail=detail,
            )

        machine.transition(name, ModuleState.UNLOADING)
        result = self._unloader.unload(name)
        status = result.unload_status or (
            UnloadStatus.UNLOADED if result.ok else UnloadStatus.ERROR
        )

        if status in (UnloadStatus.UNLOADED, UnloadStatus.NOT_PRESENT):
            detail = "" if status == UnloadStatus.UNLOADED else "already gone"
            machine.transition(name, ModuleState.UNLOADED, detail=detail)
            logger.info("Unloaded %s%s", name, f" ({detail})" if detail else "")
            return ModuleOutcome(
                module=name,
                state=ModuleState.UNLOADED,
                primitive=result.primitive,
                detail=detail,
            )

        target = ModuleState.BUSY if status == UnloadStatus.BUSY else ModuleState.FAILED
        machine.transition(name, target, detail=result.detail)
        logger.error("%s: %s failed: %s", name, result.primitive, result.detail)
        return ModuleOutcome(
            module=name,
            state=target,
            primitive=result.primitive,
            detail=result.detail,
        )
