"""Live kernel state models returned by the kernel bridge."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class Residency(BaseModel):
    """Whether a module is resident in the running kernel, and who holds it."""

    model_config = ConfigDict(frozen=True)

    name: str
    resident: bool
    refcount: int = 0
    holders: tuple[str, ...] = ()
    builtin: bool = False  # compiled into the kernel; cannot be unloaded

    @property
    def in_use(self) -> bool:
        return self.resident and self.refcount > 0


class UnloadStatus(str, Enum):
    """Outcome reported by the unload primitive."""

    UNLOADED = "unloaded"
    BUSY = "busy"
    NOT_PRESENT = "not_present"
    ERROR = "error"


class PrimitiveResult(BaseModel):
    """Result of a single load or unload primitive invocation."""

    model_config = ConfigDict(frozen=True)

    module: str
    primitive: str  # e.g. "modprobe nvidia-uvm"
    ok: bool
    detail: str = ""
    unload_status: UnloadStatus | None = None
