"""Kernel module models — definitions, states, and valid transitions."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class ModuleState(str, Enum):
    """Per-module lifecycle state within one load or unload invocation."""

    NOT_LOADED = "not_loaded"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"
    UNLOADING = "unloading"
    UNLOADED = "unloaded"
    BUSY = "busy"


# Valid state transitions, enforced by ModuleMachine.
# FAILED is terminal for a load; BUSY is left for the caller to retry.
VALID_TRANSITIONS: dict[ModuleState, set[ModuleState]] = {
    ModuleState.NOT_LOADED: {ModuleState.LOADING, ModuleState.LOADED},
    ModuleState.LOADING: {ModuleState.LOADED, ModuleState.FAILED},
    ModuleState.LOADED: {ModuleState.UNLOADING, ModuleState.BUSY},
    ModuleState.UNLOADING: {
        ModuleState.UNLOADED,
        ModuleState.BUSY,
        ModuleState.FAILED,
    },
    ModuleState.UNLOADED: set(),  # terminal
    ModuleState.BUSY: set(),  # retryable by a new invocation
    ModuleState.FAILED: set(),  # terminal
}


class ModuleDefinition(BaseModel):
    """A loadable kernel module and its hard dependencies.

    ``external`` modules belong to the host kernel (``drm``, ``i2c_core``).
    They are loaded before the stack but never packaged, signed, or unloaded.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str = ""
    priority: float = 0.0  # tie-break among independent modules
    dependencies: list[str] = []
    external: bool = False
    signable: bool = True

    @property
    def label(self) -> str:
        return self.display_name or self.name

    @property
    def kernel_name(self) -> str:
        """Name as reported by ``/proc/modules`` (dashes become underscores)."""
        return normalize_module_name(self.name)


class ModuleTransition(BaseModel):
    """Records a single module state transition."""

    model_config = ConfigDict(frozen=True)

    module: str
    from_state: ModuleState
    to_state: ModuleState
    detail: str = ""


def normalize_module_name(name: str) -> str:
    """The kernel treats ``-`` and ``_`` in module names as equivalent."""
    return name.replace("-", "_")


# Host kernel subsystems the driver links against.
EXTERNAL_MODULE_DEFINITIONS: list[ModuleDefinition] = [
    ModuleDefinition(
        name="ipmi_msghandler",
        display_name="IPMI message handler",
        priority=0.0,
        external=True,
        signable=False,
    ),
    ModuleDefinition(
        name="i2c_core",
        display_name="I2C core",
        priority=0.1,
        external=True,
        signable=False,
    ),
    ModuleDefinition(
        name="drm",
        display_name="Direct Rendering Manager",
        priority=0.2,
        external=True,
        signable=False,
    ),
    ModuleDefinition(
        name="drm_kms_helper",
        display_name="DRM KMS helper",
        priority=0.3,
        dependencies=["drm"],
        external=True,
        signable=False,
    ),
]

# The standard NVIDIA driver stack.
DEFAULT_MODULE_DEFINITIONS: list[ModuleDefinition] = EXTERNAL_MODULE_DEFINITIONS + [
    ModuleDefinition(
        name="nvidia",
        display_name="NVIDIA base driver",
        priority=1.0,
        dependencies=["ipmi_msghandler", "i2c_core"],
    ),
    ModuleDefinition(
        name="nvidia-modeset",
        display_name="NVIDIA mode-setting",
        priority=2.0,
        dependencies=["nvidia"],
    ),
    ModuleDefinition(
        name="nvidia-uvm",
        display_name="NVIDIA unified memory",
        priority=3.0,
        dependencies=["nvidia"],
    ),
    ModuleDefinition(
        name="nvidia-drm",
        display_name="NVIDIA DRM",
        priority=4.0,
        dependencies=["nvidia-modeset", "drm", "drm_kms_helper"],
    ),
]

# GPUDirect RDMA; only part of the stack when enabled.
PEERMEM_MODULE_DEFINITIONS: list[ModuleDefinition] = [
    ModuleDefinition(
        name="ib_core",
        display_name="InfiniBand core",
        priority=0.4,
        external=True,
        signable=False,
    ),
    ModuleDefinition(
        name="nvidia-peermem",
        display_name="NVIDIA peer memory",
        priority=5.0,
        dependencies=["nvidia", "ib_core"],
    ),
]


def stack_definitions(*, enable_peermem: bool = False) -> list[ModuleDefinition]:
    """Return the module definitions for the configured driver stack."""
    definitions = list(DEFAULT_MODULE_DEFINITIONS)
    if enable_peermem:
        definitions.extend(PEERMEM_MODULE_DEFINITIONS)
    return definitions
