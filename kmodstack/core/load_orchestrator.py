"""Forward walk of the load plan.

Lifecycle per module::

    NOT_LOADED -> LOADING -> LOADED
                         \\-> FAILED   (terminal; remaining plan not attempted)

A failure is fatal to the sequence.  Modules already loaded stay resident:
there is no automatic rollback, so an operator can inspect the partially
loaded stack and run an explicit unload afterwards.
"""

from __future__ import annotations

import logging

from kmodstack.bridge.kernel import ModuleLoader, ResidencyChecker
from kmodstack.config import ConfigErrorPolicy
from kmodstack.core.module_graph import ModuleGraph
from kmodstack.core.module_machine import DependencyNotLoadedError, ModuleMachine
from kmodstack.core.parameter_store import ConfigError, ParameterStore
from kmodstack.models.modules import ModuleDefinition, ModuleState
from kmodstack.models.plans import LoadPlan
from kmodstack.models.results import LoadResult, ModuleOutcome

logger = logging.getLogger(__name__)


class LoadError(RuntimeError):
    """Raised when a module in the load plan fails to load.

    Attributes
    ----------
    module:
        The module that failed.
    primitive:
        The external primitive invoked (e.g. ``"modprobe nvidia-uvm"``).
    result:
        The partial ``LoadResult`` up to and including the failure.
    """

    def __init__(
        self, module: str, primitive: str, detail: str, result: LoadResult
    ) -> None:
        self.module = module
        self.primitive = primitive
        self.detail = detail
        self.result = result
        super().__init__(f"{module}: {primitive} failed: {detail}")


class LoadOrchestrator:
    """Loads every module in a plan, strictly in order.

    Parameters
    ----------
    graph:
        The module graph the plan was derived from.
    loader:
        The module-load primitive.
    residency:
        Used to confirm each module is resident after loading.
    on_config_error:
        ``ABORT`` fails the load when a parameter file is unreadable;
        ``IGNORE`` logs a warning and loads the module without parameters.
    """

    def __init__(
        self,
        graph: ModuleGraph,
        loader: ModuleLoader,
        residency: ResidencyChecker,
        *,
        on_config_error: ConfigErrorPolicy = ConfigErrorPolicy.ABORT,
    ) -> None:
        self._graph = graph
        self._loader = loader
        self._residency = residency
        self._on_config_error = on_config_error

    def load_all(self, plan: LoadPlan, params: ParameterStore) -> LoadResult:
        """Load each module in *plan* with its parameters.

        Returns the ``LoadResult`` on success; raises ``LoadError`` naming
        the first module that failed.
        """
        machine = ModuleMachine(self._graph)
        outcomes: list[ModuleOutcome] = []

        logger.info("Loading %d modules: %s", len(plan), " -> ".join(plan.names))
        for module in plan.modules:
            outcome = self._load_one(module, params, machine)
            outcomes.append(outcome)
            if outcome.state == ModuleState.FAILED:
                result = LoadResult(outcomes=outcomes, transitions=machine.history)
                skipped = plan.names[len(outcomes):]
                if skipped:
                    logger.error(
                        "Load aborted at %s; not attempted: %s",
                        module.name, ", ".join(skipped),
                    )
                raise LoadError(module.name, outcome.primitive, outcome.detail, result)

        return LoadResult(outcomes=outcomes, transitions=machine.history)

    def _load_one(
        self, module: ModuleDefinition, params: ParameterStore, machine: ModuleMachine
    ) -> ModuleOutcome:
        name = module.name
        try:
            machine.transition(name, ModuleState.LOADING)
        except DependencyNotLoadedError as exc:
            # Plan was not produced by this graph; the module never started
            # loading, so record the failure directly.
            return ModuleOutcome(
                module=name,
                state=ModuleState.FAILED,
                primitive="dependency check",
                detail=str(exc),
            )

        try:
            tokens = self._parameters_for(module, params)
        except ConfigError as exc:
            machine.transition(name, ModuleState.FAILED, detail=exc.detail)
            logger.error("%s", exc)
            return ModuleOutcome(
                module=name,
                state=ModuleState.FAILED,
                primitive=f"read {exc.path}",
                detail=exc.detail,
            )

        logger.info(
            "Loading %s%s",
            name,
            f" with {' '.join(tokens)}" if tokens else "",
        )
        result = self._loader.load(name, tokens)
        if not result.ok:
            machine.transition(name, ModuleState.FAILED, detail=result.detail)
            logger.error("%s: %s failed: %s", name, result.primitive, result.detail)
            return ModuleOutcome(
                module=name,
                state=ModuleState.FAILED,
                primitive=result.primitive,
                detail=result.detail,
                parameters=tokens,
            )

        if not self._residency.residency(name).resident:
            detail = "load reported success but module is not resident"
            machine.transition(name, ModuleState.FAILED, detail=detail)
            logger.error("%s: %s", name, detail)
            return ModuleOutcome(
                module=name,
                state=ModuleState.FAILED,
                primitive=result.primitive,
                detail=detail,
                parameters=tokens,
            )

        machine.transition(name, ModuleState.LOADED)
        logger.info("Loaded %s", name)
        return ModuleOutcome(
            module=name,
            state=ModuleState.LOADED,
            primitive=result.primitive,
            parameters=tokens,
        )

    def _parameters_for(
        self, module: ModuleDefinition, params: ParameterStore
    ) -> tuple[str, ...]:
        """Tokens for *module*, applying the config-error policy."""
        if module.external:
            return ()
        try:
            return params.get(module.name)
        except ConfigError as exc:
            if self._on_config_error != ConfigErrorPolicy.IGNORE:
                raise
            logger.warning("%s; loading without parameters", exc)
            return ()
