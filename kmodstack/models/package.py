"""Packaging models — artifacts in, self-describing manifest out."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class ModuleArtifact(BaseModel):
    """A compiled (and possibly signed) module ready for packaging."""

    model_config = ConfigDict(frozen=True)

    module: str
    path: Path
    signed: bool = False
    signature: Path | None = None  # detached signature, when the signer writes one


class PackageEntry(BaseModel):
    """One module inside a precompiled package."""

    model_config = ConfigDict(frozen=True)

    module: str
    file_name: str
    signed: bool
    sha256: str
    size_bytes: int = 0
    signature_file: str = ""  # detached signature member, if any


class PackageManifest(BaseModel):
    """Describes a precompiled package so install time needs no side channels."""

    model_config = ConfigDict(frozen=True)

    kernel_version: str = ""
    entries: list[PackageEntry] = []
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def modules(self) -> list[str]:
        return [e.module for e in self.entries]

    @property
    def signed(self) -> bool:
        """True when the signable modules were signed (non-signable never are)."""
        return any(e.signed for e in self.entries)

    def entry(self, module: str) -> PackageEntry:
        for e in self.entries:
            if e.module == module:
                return e
        raise KeyError(module)
