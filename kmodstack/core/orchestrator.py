"""Stack orchestrator — the central coordinator for the driver container.

The StackOrchestrator wires the ModuleGraph, ParameterStore, SigningPipeline,
PackagingStage, and the load/unload orchestrators into the process modes:

- ``install``: sign (when a key is configured) and package, no load.
- ``bring_up`` / ``tear_down``: load or unload the stack.
- ``run``: bring the stack up, block until SIGTERM/SIGINT, tear it down.
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable
from pathlib import Path

from kmodstack.bridge.crypto_bridge import ModuleSigner
from kmodstack.bridge.kernel import KernelBackend, ModprobeKernel
from kmodstack.bridge.packager import CommandPackager, Packager, TarballPackager
from kmodstack.config import StackConfig
from kmodstack.core.load_orchestrator import LoadOrchestrator
from kmodstack.core.module_graph import ModuleGraph
from kmodstack.core.packaging import PackagingError, PackagingStage, verify_package
from kmodstack.core.parameter_store import ParameterStore
from kmodstack.core.signing import SigningPipeline
from kmodstack.core.unload_orchestrator import UnloadOrchestrator
from kmodstack.models.kernel import Residency
from kmodstack.models.modules import stack_definitions
from kmodstack.models.package import ModuleArtifact, PackageManifest
from kmodstack.models.results import LoadResult, UnloadResult

logger = logging.getLogger(__name__)

MODULE_SUFFIX = ".ko"


class StackOrchestrator:
    """Central driver-stack orchestrator.

    Parameters
    ----------
    config:
        Stack configuration. Read from the environment if not provided.
    kernel:
        Kernel primitives. ``modprobe``/``rmmod`` when not provided.
    packager:
        Packaging primitive. Tarball, or ``config.packager_command``.
    signer:
        Signer override (the backend named by the config otherwise).
    """

    def __init__(
        self,
        config: StackConfig | None = None,
        *,
        kernel: KernelBackend | None = None,
        packager: Packager | None = None,
        signer: ModuleSigner | None = None,
    ) -> None:
        self.config = config or StackConfig()
        self.graph = ModuleGraph(
            stack_definitions(enable_peermem=self.config.enable_peermem)
        )
        self.params = ParameterStore(self.config.config_dir)
        self.kernel: KernelBackend = kernel or ModprobeKernel(
            self.config.module_root,
            timeout=self.config.command_timeout_seconds,
        )
        if packager is None:
            if self.config.packager_command:
                packager = CommandPackager(
                    self.config.packager_command,
                    timeout=self.config.command_timeout_seconds,
                )
            else:
                packager = TarballPackager()
        self.packager = packager
        self._signer = signer
        self.manifest: PackageManifest | None = None

        self.loader = LoadOrchestrator(
            self.graph,
            self.kernel,
            self.kernel,
            on_config_error=self.config.on_config_error,
        )
        self.unloader = UnloadOrchestrator(self.graph, self.kernel, self.kernel)

    # ------------------------------------------------------------------
    # Build time
    # ------------------------------------------------------------------

    def discover_artifacts(self, artifact_dir: Path | None = None) -> list[ModuleArtifact]:
        """Compiled ``<module>.ko`` files present for the owned modules.

        Missing files are left out; packaging reports them by name.
        """
        base = Path(artifact_dir or self.config.artifact_dir)
        artifacts = []
        for module in self.graph.owned_modules():
            path = base / f"{module.name}{MODULE_SUFFIX}"
            if path.is_file():
                artifacts.append(ModuleArtifact(module=module.name, path=path))
            else:
                logger.warning("No compiled artifact for %s at %s", module.name, path)
        return artifacts

    def install(self, artifacts: list[ModuleArtifact] | None = None) -> Path:
        """Sign (if configured) and package the compiled modules.

        Raises ``SigningConfigError``, ``SigningError`` or ``PackagingError``;
        in every failure case no package file is produced.
        """
        context = self.config.signing_context()
        if artifacts is None:
            artifacts = self.discover_artifacts()

        pipeline = SigningPipeline(
            context,
            self.config.staging_dir,
            signer=self._signer,
            sign_file=self.config.sign_file_path,
            max_workers=self.config.sign_workers,
            timeout=self.config.command_timeout_seconds,
        )
        unsignable = frozenset(m.name for m in self.graph.owned_modules() if not m.signable)
        staged = pipeline.sign_all(artifacts, unsignable=unsignable)

        stage = PackagingStage(
            self.graph,
            self.packager,
            self.config.package_path,
            kernel_version=self.config.kernel_version,
        )
        package = stage.package(staged)
        if isinstance(self.packager, TarballPackager):
            try:
                verify_package(package)
            except PackagingError:
                package.unlink(missing_ok=True)
                raise
        self.manifest = stage.manifest
        return package

    # ------------------------------------------------------------------
    # Run time
    # ------------------------------------------------------------------

    def bring_up(self) -> LoadResult:
        """Load the whole stack in dependency order. Raises ``LoadError``."""
        return self.loader.load_all(self.graph.topological_order(), self.params)

    def tear_down(self) -> UnloadResult:
        """Unload every resident owned module. Raises ``UnloadError``."""
        return self.unloader.unload_all(self.graph.reverse_order())

    def run(self, wait: Callable[[], None] | None = None) -> UnloadResult:
        """Load the stack, block until *wait* returns, then unload it.

        *wait* defaults to blocking until SIGTERM or SIGINT.  A load failure
        propagates immediately and nothing is unloaded.
        """
        self.bring_up()
        logger.info("Driver stack is up; waiting for termination signal")
        (wait or wait_for_termination)()
        logger.info("Termination requested; unloading driver stack")
        return self.tear_down()

    def status(self) -> list[Residency]:
        """Live residency of every module in the graph, in load order."""
        return [self.kernel.residency(name) for name in self.graph.module_names]


def wait_for_termination(
    signals: tuple[signal.Signals, ...] = (signal.SIGTERM, signal.SIGINT),
) -> signal.Signals:
    """Block the main thread until one of *signals* arrives; return it."""
    received: list[signal.Signals] = []
    stop = threading.Event()

    def _handler(signum: int, _frame: object) -> None:
        received.append(signal.Signals(signum))
        stop.set()

    previous = {s: signal.signal(s, _handler) for s in signals}
    try:
        while not stop.wait(timeout=1.0):
            pass
    finally:
        for s, handler in previous.items():
            signal.signal(s, handler)
    logger.info("Received %s", received[0].name)
    return received[0]
