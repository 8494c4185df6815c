"""Per-module lifecycle state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- Dependencies LOADED before a module enters LOADING
- Every transition recorded in an in-order history
"""

from __future__ import annotations

import logging

from kmodstack.core.module_graph import ModuleGraph
from kmodstack.models.modules import (
    VALID_TRANSITIONS,
    ModuleState,
    ModuleTransition,
)

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class DependencyNotLoadedError(RuntimeError):
    """Raised when a module would start loading before its dependencies."""


class ModuleMachine:
    """Tracks module states for a single load or unload invocation.

    Parameters
    ----------
    graph:
        The module graph used for dependency checking.
    """

    def __init__(self, graph: ModuleGraph) -> None:
        self._graph = graph
        self._states: dict[str, ModuleState] = {
            name: ModuleState.NOT_LOADED for name in graph.module_names
        }
        self._history: list[ModuleTransition] = []

    # ------------------------------------------------------------------
    # State queries
    # ------------------------------------------------------------------

    def get_state(self, module: str) -> ModuleState:
        return self._states.get(module, ModuleState.NOT_LOADED)

    def get_all_states(self) -> dict[str, ModuleState]:
        """Return a snapshot of all module states."""
        return dict(self._states)

    @property
    def history(self) -> list[ModuleTransition]:
        return list(self._history)

    def unmet_dependencies(self, module: str) -> list[str]:
        """Dependencies of *module* that are not LOADED in this invocation."""
        return [
            dep for dep in self._graph.get_dependencies(module)
            if self.get_state(dep) != ModuleState.LOADED
        ]

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def transition(
        self, module: str, target: ModuleState, *, detail: str = ""
    ) -> ModuleTransition:
        """Move *module* to *target*, validating the transition.

        Entering LOADING additionally requires every dependency to be LOADED.
        """
        self._graph.get(module)
        current = self.get_state(module)

        allowed = VALID_TRANSITIONS.get(current, set())
        if target not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {module} from {current.value} to {target.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )

        if target == ModuleState.LOADING:
            missing = self.unmet_dependencies(module)
            if missing:
                raise DependencyNotLoadedError(
                    f"Cannot load {module}: dependencies not loaded: {', '.join(missing)}"
                )

        record = ModuleTransition(
            module=module, from_state=current, to_state=target, detail=detail
        )
        self._states[module] = target
        self._history.append(record)
        logger.debug("%s: %s -> %s %s", module, current.value, target.value, detail)
        return record

    def mark_resident(self, module: str, *, detail: str = "observed resident") -> None:
        """Record that *module* was found already resident in the kernel."""
        if self.get_state(module) != ModuleState.LOADED:
            self.transition(module, ModuleState.LOADED, detail=detail)
