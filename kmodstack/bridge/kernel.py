"""Kernel module primitives — load, unload, and residency.

Bridge boundary
---------------
The orchestrators never touch the kernel directly.  They depend on three
Protocols:

1. ``ResidencyChecker`` — is a module resident, and how many holders?
2. ``ModuleLoader`` — load a module with an ordered argument list.
3. ``ModuleUnloader`` — unload a module; report busy / not present.

``ModprobeKernel`` satisfies all three using ``modprobe``, ``rmmod``,
``/proc/modules`` and ``/sys/module`` (for modules built into the kernel).
Tests substitute an in-memory fake.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from kmodstack.bridge.shell import DEFAULT_TIMEOUT_SECONDS, run_command
from kmodstack.models.kernel import PrimitiveResult, Residency, UnloadStatus
from kmodstack.models.modules import normalize_module_name

logger = logging.getLogger(__name__)

PROC_MODULES = Path("/proc/modules")
SYS_MODULE = Path("/sys/module")

_BUSY_PATTERNS = (
    re.compile(r"\bis in use\b", re.IGNORECASE),
    re.compile(r"resource temporarily unavailable", re.IGNORECASE),
    re.compile(r"device or resource busy", re.IGNORECASE),
)
_NOT_PRESENT_PATTERNS = (
    re.compile(r"is not currently loaded", re.IGNORECASE),
    re.compile(r"does not exist in /proc/modules", re.IGNORECASE),
    re.compile(r"no such file or directory", re.IGNORECASE),
)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class ResidencyChecker(Protocol):
    """Reports whether a module is resident in the running kernel."""

    def residency(self, module: str) -> Residency:
        ...


@runtime_checkable
class ModuleLoader(Protocol):
    """Loads a module with its parameter tokens, in order."""

    def load(self, module: str, args: Sequence[str]) -> PrimitiveResult:
        ...


@runtime_checkable
class ModuleUnloader(Protocol):
    """Unloads a module, classifying failures as busy or not present."""

    def unload(self, module: str) -> PrimitiveResult:
        ...


@runtime_checkable
class KernelBackend(ResidencyChecker, ModuleLoader, ModuleUnloader, Protocol):
    """All three primitives together."""


# ---------------------------------------------------------------------------
# /proc/modules and rmmod output parsing
# ---------------------------------------------------------------------------


def parse_proc_modules(text: str) -> dict[str, Residency]:
    """Parse ``/proc/modules`` into residency records keyed by kernel name.

    Each line reads ``name size refcount holders state address [taint]``;
    holders is ``-`` or a comma-terminated list.
    """
    modules: dict[str, Residency] = {}
    for line in text.splitlines():
        fields = line.split()
        if len(fields) < 3:
            continue
        name = normalize_module_name(fields[0])
        try:
            refcount = int(fields[2])
        except ValueError:
            refcount = 0
        holders: tuple[str, ...] = ()
        if len(fields) > 3 and fields[3] != "-":
            holders = tuple(h for h in fields[3].split(",") if h)
        modules[name] = Residency(
            name=name, resident=True, refcount=refcount, holders=holders
        )
    return modules


def classify_unload_failure(detail: str) -> UnloadStatus:
    """Map an unload tool's error output onto an ``UnloadStatus``."""
    if any(p.search(detail) for p in _NOT_PRESENT_PATTERNS):
        return UnloadStatus.NOT_PRESENT
    if any(p.search(detail) for p in _BUSY_PATTERNS):
        return UnloadStatus.BUSY
    return UnloadStatus.ERROR


# ---------------------------------------------------------------------------
# modprobe / rmmod backend
# ---------------------------------------------------------------------------


class ModprobeKernel:
    """Kernel primitives backed by ``modprobe``, ``rmmod`` and ``/proc/modules``.

    Parameters
    ----------
    module_root:
        Optional alternate module root passed to ``modprobe -d`` (the
        driver container installs its modules outside ``/lib/modules``).
    proc_modules:
        Path to the module table; overridable for tests.
    sys_module:
        Root of the sysfs module tree.  A built-in module has a directory
        here but no line in ``proc_modules``.
    timeout:
        Per-command timeout in seconds.
    """

    def __init__(
        self,
        module_root: Path | None = None,
        *,
        proc_modules: Path = PROC_MODULES,
        sys_module: Path = SYS_MODULE,
        timeout: int = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._module_root = module_root
        self._proc_modules = Path(proc_modules)
        self._sys_module = Path(sys_module)
        self._timeout = timeout

    def resident_modules(self) -> dict[str, Residency]:
        try:
            return parse_proc_modules(self._proc_modules.read_text())
        except FileNotFoundError:
            logger.warning("%s not found; treating every loadable module as absent", self._proc_modules)
            return {}

    def residency(self, module: str) -> Residency:
        name = normalize_module_name(module)
        loaded = self.resident_modules().get(name)
        if loaded is not None:
            return loaded
        if (self._sys_module / name).is_dir():
            return Residency(name=name, resident=True, builtin=True)
        return Residency(name=name, resident=False)

    def load(self, module: str, args: Sequence[str]) -> PrimitiveResult:
        argv = ["modprobe"]
        if self._module_root is not None:
            argv += ["-d", str(self._module_root)]
        argv += [module, *args]
        result = run_command(argv, timeout=self._timeout)
        return PrimitiveResult(
            module=module,
            primitive=f"modprobe {module}",
            ok=result.ok,
            detail="" if result.ok else result.detail,
        )

    def unload(self, module: str) -> PrimitiveResult:
        result = run_command(["rmmod", module], timeout=self._timeout)
        if result.ok:
            status = UnloadStatus.UNLOADED
        else:
            status = classify_unload_failure(f"{result.stderr}\n{result.stdout}")
        return PrimitiveResult(
            module=module,
            primitive=f"rmmod {module}",
            ok=result.ok,
            detail="" if result.ok else result.detail,
            unload_status=status,
        )
