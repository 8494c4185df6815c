"""Shared test fixtures for kmodstack."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path

import pytest

from kmodstack.bridge.crypto_bridge import generate_keypair
from kmodstack.config import StackConfig
from kmodstack.core.module_graph import ModuleGraph
from kmodstack.core.parameter_store import ParameterStore
from kmodstack.models.kernel import PrimitiveResult, Residency, UnloadStatus
from kmodstack.models.modules import (
    DEFAULT_MODULE_DEFINITIONS,
    ModuleDefinition,
    normalize_module_name,
)
from kmodstack.models.package import ModuleArtifact
from kmodstack.models.signing import SignerBackend, SigningKey


# ---------------------------------------------------------------------------
# Fake kernel: in-memory stand-in for modprobe / rmmod / /proc/modules
# ---------------------------------------------------------------------------


class FakeKernel:
    """Records every primitive call and simulates kernel residency.

    Parameters
    ----------
    resident:
        Modules already loaded, mapped to their refcount.
    fail_load:
        Modules whose load fails, mapped to the error text.
    busy_on_unload:
        Modules whose unload primitive reports "in use".
    vanish_on_unload:
        Modules that disappear between the residency check and the unload
        call (the unload primitive reports "not currently loaded").
    ghost_load:
        Modules whose load reports success without becoming resident.
    builtin:
        Modules compiled into the kernel: always resident, never in the
        loadable module table.
    """

    def __init__(
        self,
        resident: dict[str, int] | None = None,
        *,
        fail_load: dict[str, str] | None = None,
        busy_on_unload: set[str] | None = None,
        vanish_on_unload: set[str] | None = None,
        ghost_load: set[str] | None = None,
        builtin: set[str] | None = None,
    ) -> None:
        self.resident: dict[str, int] = {
            normalize_module_name(k): v for k, v in (resident or {}).items()
        }
        self.fail_load = fail_load or {}
        self.busy_on_unload = busy_on_unload or set()
        self.vanish_on_unload = vanish_on_unload or set()
        self.ghost_load = ghost_load or set()
        self.builtin = {normalize_module_name(m) for m in builtin or ()}
        self.calls: list[tuple[str, str, tuple[str, ...]]] = []

    def residency(self, module: str) -> Residency:
        name = normalize_module_name(module)
        if name in self.resident:
            return Residency(name=name, resident=True, refcount=self.resident[name])
        if name in self.builtin:
            return Residency(name=name, resident=True, builtin=True)
        return Residency(name=name, resident=False)

    def load(self, module: str, args: Sequence[str]) -> PrimitiveResult:
        self.calls.append(("load", module, tuple(args)))
        primitive = f"modprobe {module}"
        if module in self.fail_load:
            return PrimitiveResult(
                module=module, primitive=primitive, ok=False, detail=self.fail_load[module]
            )
        name = normalize_module_name(module)
        if module not in self.ghost_load and name not in self.builtin:
            self.resident.setdefault(name, 0)
        return PrimitiveResult(module=module, primitive=primitive, ok=True)

    def unload(self, module: str) -> PrimitiveResult:
        self.calls.append(("unload", module, ()))
        primitive = f"rmmod {module}"
        name = normalize_module_name(module)
        if module in self.busy_on_unload:
            return PrimitiveResult(
                module=module,
                primitive=primitive,
                ok=False,
                detail=f"rmmod: ERROR: Module {name} is in use",
                unload_status=UnloadStatus.BUSY,
            )
        if module in self.vanish_on_unload:
            self.resident.pop(name, None)
        if name not in self.resident:
            return PrimitiveResult(
                module=module,
                primitive=primitive,
                ok=False,
                detail=f"rmmod: ERROR: Module {name} is not currently loaded",
                unload_status=UnloadStatus.NOT_PRESENT,
            )
        del self.resident[name]
        return PrimitiveResult(
            module=module, primitive=primitive, ok=True, unload_status=UnloadStatus.UNLOADED
        )

    def calls_of(self, op: str) -> list[str]:
        return [name for kind, name, _ in self.calls if kind == op]


@pytest.fixture
def fake_kernel() -> FakeKernel:
    """An empty fake kernel: nothing resident, every primitive succeeds."""
    return FakeKernel()


# ---------------------------------------------------------------------------
# Graphs
# ---------------------------------------------------------------------------


@pytest.fixture
def chain_graph() -> ModuleGraph:
    """A -> B -> C: C depends on B, which depends on A."""
    return ModuleGraph([
        ModuleDefinition(name="a", priority=0),
        ModuleDefinition(name="b", priority=1, dependencies=["a"]),
        ModuleDefinition(name="c", priority=2, dependencies=["b"]),
    ])


@pytest.fixture
def nvidia_graph() -> ModuleGraph:
    """base, modeset->base, uvm->base, drm->modeset, peermem->base."""
    return ModuleGraph([
        ModuleDefinition(name="base", priority=1),
        ModuleDefinition(name="modeset", priority=2, dependencies=["base"]),
        ModuleDefinition(name="uvm", priority=3, dependencies=["base"]),
        ModuleDefinition(name="drm", priority=4, dependencies=["modeset"]),
        ModuleDefinition(name="peermem", priority=5, dependencies=["base"]),
    ])


@pytest.fixture
def default_graph() -> ModuleGraph:
    """The shipped NVIDIA topology, including host-managed prerequisites."""
    return ModuleGraph(DEFAULT_MODULE_DEFINITIONS)


# ---------------------------------------------------------------------------
# Parameters, artifacts, keys, config
# ---------------------------------------------------------------------------


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    path = tmp_path / "drivers"
    path.mkdir()
    return path


@pytest.fixture
def param_store(config_dir: Path) -> ParameterStore:
    return ParameterStore(config_dir)


@pytest.fixture
def make_artifacts(tmp_path: Path) -> Callable[..., list[ModuleArtifact]]:
    """Factory fixture: write a fake ``<module>.ko`` per name."""

    def _factory(names: list[str], directory: str = "build") -> list[ModuleArtifact]:
        base = tmp_path / directory
        base.mkdir(parents=True, exist_ok=True)
        artifacts = []
        for name in names:
            path = base / f"{name}.ko"
            path.write_bytes(b"\x7fELF" + name.encode() * 16)
            artifacts.append(ModuleArtifact(module=name, path=path))
        return artifacts

    return _factory


@pytest.fixture
def ed25519_key(tmp_path: Path) -> SigningKey:
    """An Ed25519 key pair on disk, wrapped as a SigningKey."""
    priv, pub = generate_keypair()
    keys = tmp_path / "keys"
    keys.mkdir()
    (keys / "signing.key").write_text(priv + "\n")
    (keys / "signing.pub").write_text(pub + "\n")
    return SigningKey(
        private_key=keys / "signing.key",
        public_key=keys / "signing.pub",
        backend=SignerBackend.ED25519,
    )


@pytest.fixture
def stack_config(tmp_path: Path, config_dir: Path) -> StackConfig:
    """A StackConfig with every path inside the test's temp directory."""
    return StackConfig(
        _env_file=None,
        config_dir=config_dir,
        artifact_dir=tmp_path / "build",
        staging_dir=tmp_path / "staging",
        package_path=tmp_path / "out" / "modules.tar.gz",
        kernel_version="6.8.0-test",
    )


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep host KMODSTACK_* variables from leaking into tests."""
    import os

    for key in list(os.environ):
        if key.startswith("KMODSTACK_"):
            monkeypatch.delenv(key, raising=False)
