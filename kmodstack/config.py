"""Runtime configuration — env-driven via pydantic-settings.

Reads from a .env file and KMODSTACK_* environment variables, so the
container entrypoint can be configured entirely from the pod spec.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from kmodstack.models.signing import SignerBackend, SigningContext, SigningKey


class SigningConfigError(ValueError):
    """Raised when signing key material is only partially configured."""


class ConfigErrorPolicy(str, Enum):
    """What the load orchestrator does when a parameter file is unreadable."""

    ABORT = "abort"
    IGNORE = "ignore"


class StackConfig(BaseSettings):
    """Driver container configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export KMODSTACK_CONFIG_DIR=/drivers
        export KMODSTACK_SIGNING_PRIVATE_KEY=/run/secrets/signing_key.pem
        export KMODSTACK_SIGNING_PUBLIC_KEY=/run/secrets/signing_key.x509
        export KMODSTACK_ENABLE_PEERMEM=true
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="KMODSTACK_",
        env_file_encoding="utf-8",
    )

    log_level: str = "INFO"

    # Module parameters: one <module>.conf per module
    config_dir: Path = Path("/drivers")

    # Build inputs and outputs
    artifact_dir: Path = Path("/usr/src/nvidia/kernel")
    staging_dir: Path = Path("/var/lib/kmodstack/staging")
    package_path: Path = Path("/var/lib/kmodstack/precompiled/nvidia-modules.tar.gz")
    kernel_version: str = ""
    packager_command: str = ""  # external packaging tool; tarball when empty

    # Runtime
    module_root: Path | None = None  # passed to modprobe -d
    enable_peermem: bool = False
    on_config_error: ConfigErrorPolicy = ConfigErrorPolicy.ABORT
    command_timeout_seconds: int = 120

    # Secure boot signing: both keys or neither
    signing_private_key: Path | None = None
    signing_public_key: Path | None = None
    signer_backend: SignerBackend = SignerBackend.SIGN_FILE
    sign_file_path: Path = Path("/usr/src/linux-headers/scripts/sign-file")
    sign_hash_algo: str = "sha256"
    sign_workers: int = 4

    @property
    def signing_enabled(self) -> bool:
        return self.signing_private_key is not None or self.signing_public_key is not None

    def signing_context(self) -> SigningContext | None:
        """Build the optional signing context.

        Returns ``None`` when no key material is configured. Raises
        ``SigningConfigError`` when only one half of the key pair is set.
        """
        if self.signing_private_key is None and self.signing_public_key is None:
            return None
        if self.signing_private_key is None or self.signing_public_key is None:
            missing = (
                "KMODSTACK_SIGNING_PRIVATE_KEY"
                if self.signing_private_key is None
                else "KMODSTACK_SIGNING_PUBLIC_KEY"
            )
            raise SigningConfigError(
                f"Signing key material is partially configured: {missing} is not set. "
                f"Set both keys to sign modules, or neither to package unsigned."
            )
        return SigningContext(
            key=SigningKey(
                private_key=self.signing_private_key,
                public_key=self.signing_public_key,
                backend=self.signer_backend,
                hash_algo=self.sign_hash_algo,
            )
        )
