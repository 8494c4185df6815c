"""Aggregate results returned by the load and unload orchestrators."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from kmodstack.models.modules import ModuleState, ModuleTransition


class ModuleOutcome(BaseModel):
    """Final state of one module after an orchestration pass."""

    model_config = ConfigDict(frozen=True)

    module: str
    state: ModuleState
    primitive: str = ""
    detail: str = ""
    parameters: tuple[str, ...] = ()


class LoadResult(BaseModel):
    """Outcome of ``LoadOrchestrator.load_all``."""

    model_config = ConfigDict(frozen=True)

    outcomes: list[ModuleOutcome] = []
    transitions: list[ModuleTransition] = []

    @property
    def loaded(self) -> list[str]:
        return [o.module for o in self.outcomes if o.state == ModuleState.LOADED]

    @property
    def failed(self) -> ModuleOutcome | None:
        for o in self.outcomes:
            if o.state == ModuleState.FAILED:
                return o
        return None

    @property
    def ok(self) -> bool:
        return self.failed is None


class UnloadResult(BaseModel):
    """Outcome of ``UnloadOrchestrator.unload_all``."""

    model_config = ConfigDict(frozen=True)

    outcomes: list[ModuleOutcome] = []
    transitions: list[ModuleTransition] = []

    @property
    def unloaded(self) -> list[str]:
        return [o.module for o in self.outcomes if o.state == ModuleState.UNLOADED]

    @property
    def skipped(self) -> list[str]:
        return [o.module for o in self.outcomes if o.state == ModuleState.NOT_LOADED]

    @property
    def failures(self) -> list[ModuleOutcome]:
        return [
            o for o in self.outcomes
            if o.state in (ModuleState.BUSY, ModuleState.FAILED)
        ]

    @property
    def ok(self) -> bool:
        return not self.failures
