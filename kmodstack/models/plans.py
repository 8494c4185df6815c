"""Load and unload plans derived from the module graph."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from kmodstack.models.modules import ModuleDefinition


class LoadPlan(BaseModel):
    """Topologically sorted modules: every dependency precedes its dependents.

    Computed once per invocation and immutable thereafter.
    """

    model_config = ConfigDict(frozen=True)

    modules: tuple[ModuleDefinition, ...] = ()

    @property
    def names(self) -> list[str]:
        return [m.name for m in self.modules]

    def __len__(self) -> int:
        return len(self.modules)


class UnloadPlan(BaseModel):
    """Reverse of a LoadPlan, restricted to modules this stack owns.

    Filtered by live residency at execution time, not at construction.
    """

    model_config = ConfigDict(frozen=True)

    modules: tuple[ModuleDefinition, ...] = ()

    @property
    def names(self) -> list[str]:
        return [m.name for m in self.modules]

    def __len__(self) -> int:
        return len(self.modules)

    @classmethod
    def from_load_plan(cls, plan: LoadPlan) -> UnloadPlan:
        return cls(modules=tuple(m for m in reversed(plan.modules) if not m.external))
