"""Signing key material and per-module signing state."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict


class SignerBackend(str, Enum):
    """Which signer produces module signatures."""

    SIGN_FILE = "sign-file"  # the kernel's scripts/sign-file (PKCS#7)
    ED25519 = "ed25519"  # detached Ed25519 signature via PyNaCl


class SigningKey(BaseModel):
    """Private key plus its public half (certificate or verify key).

    Both paths are always present; a half-configured key never reaches
    this model (see ``StackConfig.signing_context``).
    """

    model_config = ConfigDict(frozen=True)

    private_key: Path
    public_key: Path
    backend: SignerBackend = SignerBackend.SIGN_FILE
    hash_algo: str = "sha256"


class SigningContext(BaseModel):
    """Key material for one invocation plus which modules ended up signed."""

    model_config = ConfigDict(frozen=True)

    key: SigningKey
    signed: dict[str, bool] = {}

    def is_signed(self, module: str) -> bool:
        return self.signed.get(module, False)

    def with_results(self, signed: dict[str, bool]) -> SigningContext:
        return self.model_copy(update={"signed": {**self.signed, **signed}})
