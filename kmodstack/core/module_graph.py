"""Static module dependency DAG driving load and unload order.

The graph enforces:
- Every dependency names a module known to the graph.
- The dependency relation is acyclic (no module depends on itself,
  directly or transitively).
- Load order is deterministic: among modules whose dependencies are all
  satisfied, lower ``priority`` loads first, then name.
"""

from __future__ import annotations

import heapq
from collections import deque

from kmodstack.models.modules import ModuleDefinition
from kmodstack.models.plans import LoadPlan, UnloadPlan


class CyclicDependencyError(ValueError):
    """Raised when the module graph contains a cycle."""


class UnknownModuleError(KeyError):
    """Raised when a module or dependency is not part of the graph."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class ModuleGraph:
    """Directed acyclic graph of kernel module dependencies.

    Built once from ``ModuleDefinition``s and never mutated afterwards.
    """

    def __init__(self, definitions: list[ModuleDefinition]) -> None:
        self._modules: dict[str, ModuleDefinition] = {}
        for md in definitions:
            if md.name in self._modules:
                raise ValueError(f"Module {md.name!r} is declared more than once")
            self._modules[md.name] = md

        # Forward edges: module -> its dependencies
        self._dependencies: dict[str, list[str]] = {
            md.name: list(md.dependencies) for md in definitions
        }
        # Reverse edges: module -> modules that depend on it
        self._dependents: dict[str, list[str]] = {md.name: [] for md in definitions}
        for md in definitions:
            for dep in md.dependencies:
                if dep == md.name:
                    raise CyclicDependencyError(f"Module {md.name!r} depends on itself")
                if dep not in self._modules:
                    raise UnknownModuleError(
                        f"Module {md.name!r} depends on unknown module {dep!r}"
                    )
                self._dependents[dep].append(md.name)

        self._order = self._kahn_order()

    def _sort_key(self, name: str) -> tuple[float, str]:
        return (self._modules[name].priority, name)

    def _kahn_order(self) -> list[str]:
        """Kahn's algorithm with a priority-ordered ready set."""
        in_degree = {name: len(deps) for name, deps in self._dependencies.items()}
        ready = [self._sort_key(n) for n, deg in in_degree.items() if deg == 0]
        heapq.heapify(ready)
        order: list[str] = []

        while ready:
            _, node = heapq.heappop(ready)
            order.append(node)
            for dependent in self._dependents[node]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, self._sort_key(dependent))

        if len(order) != len(self._modules):
            stuck = sorted(n for n, deg in in_degree.items() if deg > 0)
            raise CyclicDependencyError(
                f"Module graph has a cycle. "
                f"Ordered {len(order)}/{len(self._modules)} modules; "
                f"unresolved: {', '.join(stuck)}"
            )
        return order

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def __contains__(self, name: object) -> bool:
        return name in self._modules

    def __len__(self) -> int:
        return len(self._modules)

    def get(self, name: str) -> ModuleDefinition:
        """Return the definition for *name*."""
        try:
            return self._modules[name]
        except KeyError:
            raise UnknownModuleError(f"Unknown module {name!r}") from None

    def get_dependencies(self, name: str) -> list[str]:
        """Return direct dependencies of a module."""
        self.get(name)
        return list(self._dependencies[name])

    def get_dependents(self, name: str) -> list[str]:
        """Return all transitive dependents of a module (BFS)."""
        self.get(name)
        result = []
        queue = deque(self._dependents[name])
        visited: set[str] = set()
        while queue:
            node = queue.popleft()
            if node in visited:
                continue
            visited.add(node)
            result.append(node)
            queue.extend(self._dependents[node])
        return result

    @property
    def module_names(self) -> list[str]:
        """All module names in load order."""
        return list(self._order)

    def owned_modules(self) -> list[ModuleDefinition]:
        """Modules built, packaged and unloaded by this stack, in load order."""
        return [self._modules[n] for n in self._order if not self._modules[n].external]

    def external_modules(self) -> list[ModuleDefinition]:
        """Host-managed prerequisites, in load order."""
        return [self._modules[n] for n in self._order if self._modules[n].external]

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def topological_order(self) -> LoadPlan:
        """Return the load plan: every dependency precedes its dependents."""
        return LoadPlan(modules=tuple(self._modules[n] for n in self._order))

    def reverse_order(self) -> UnloadPlan:
        """Return the unload plan: reverse load order, owned modules only."""
        return UnloadPlan.from_load_plan(self.topological_order())
