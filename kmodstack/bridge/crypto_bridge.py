"""Crypto bridge — module signer backends.

Bridge boundary
---------------
Two interchangeable signers satisfy the ``ModuleSigner`` Protocol:

1. **sign-file** (``SignFileSigner``): the kernel's ``scripts/sign-file``
   appends a PKCS#7 signature to the module.  This is what secure boot
   verifies, and the default.

2. **Ed25519** (``Ed25519Signer``): native signing via PyNaCl (libsodium).
   Writes a detached ``<module>.ko.sig`` next to the staged copy.  Used for
   out-of-band integrity checking where the kernel keyring is not involved.

Both write into a staging path and never modify the compiled original.
"""

from __future__ import annotations

import hashlib
import logging
import shutil
from pathlib import Path
from typing import Protocol, runtime_checkable

import nacl.signing
from nacl.exceptions import BadSignatureError

from kmodstack.bridge.shell import DEFAULT_TIMEOUT_SECONDS, run_command
from kmodstack.models.signing import SignerBackend, SigningKey

logger = logging.getLogger(__name__)

SIGNATURE_SUFFIX = ".sig"


def detached_signature_path(module_path: Path) -> Path:
    """Where a detached signature for *module_path* is written."""
    return module_path.with_name(module_path.name + SIGNATURE_SUFFIX)


class SignerError(RuntimeError):
    """Raised by a signer when one artifact cannot be signed."""

    def __init__(self, primitive: str, detail: str) -> None:
        self.primitive = primitive
        self.detail = detail
        super().__init__(f"{primitive} failed: {detail}")


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class ModuleSigner(Protocol):
    """Signs one module artifact into *destination*."""

    def sign(self, artifact: Path, key: SigningKey, destination: Path) -> Path:
        """Return the path of the signed artifact (normally *destination*)."""
        ...


# ---------------------------------------------------------------------------
# Ed25519 primitives (PyNaCl)
# ---------------------------------------------------------------------------


def generate_keypair() -> tuple[str, str]:
    """Generate an Ed25519 key pair.

    Returns
    -------
    tuple[str, str]
        ``(private_key_hex, public_key_hex)``
    """
    sk = nacl.signing.SigningKey.generate()
    return (sk.encode().hex(), sk.verify_key.encode().hex())


def sign_data(data: bytes, private_key: str) -> str:
    """Sign *data* with a hex-encoded Ed25519 seed; return the hex signature."""
    sk = nacl.signing.SigningKey(bytes.fromhex(private_key))
    return sk.sign(data).signature.hex()


def verify_data(data: bytes, signature: str, public_key: str) -> bool:
    """Return ``True`` if *signature* is valid for *data* under *public_key*.

    Malformed hex or wrong-length keys verify as ``False``.
    """
    if not signature:
        return False
    try:
        vk = nacl.signing.VerifyKey(bytes.fromhex(public_key))
        vk.verify(data, bytes.fromhex(signature))
        return True
    except (BadSignatureError, ValueError, TypeError):
        return False


def key_fingerprint(public_key: str) -> str:
    """First 16 hex characters of SHA-256(public key).

    Logged alongside signing runs so operators can tell which key was
    active without printing the key itself.
    """
    if not public_key:
        return ""
    return hashlib.sha256(public_key.encode("utf-8")).hexdigest()[:16]


def _read_hex_key(path: Path, what: str) -> str:
    try:
        value = path.read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise SignerError(f"read {what} {path}", exc.strerror or str(exc)) from exc
    try:
        bytes.fromhex(value)
    except ValueError:
        raise SignerError(f"read {what} {path}", "key is not hex-encoded") from None
    return value


# ---------------------------------------------------------------------------
# Signers
# ---------------------------------------------------------------------------


class Ed25519Signer:
    """Detached Ed25519 signatures, verified against the public key on write."""

    def sign(self, artifact: Path, key: SigningKey, destination: Path) -> Path:
        private_hex = _read_hex_key(key.private_key, "private key")
        public_hex = _read_hex_key(key.public_key, "public key")
        primitive = f"ed25519 sign {artifact.name}"

        try:
            data = artifact.read_bytes()
        except OSError as exc:
            raise SignerError(primitive, exc.strerror or str(exc)) from exc
        try:
            signature = sign_data(data, private_hex)
        except ValueError as exc:
            raise SignerError(primitive, f"invalid private key: {exc}") from exc
        if not verify_data(data, signature, public_hex):
            raise SignerError(primitive, "signature does not verify against the public key")

        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(artifact, destination)
        sig_path = detached_signature_path(destination)
        sig_path.write_text(signature + "\n", encoding="utf-8")
        logger.debug(
            "Signed %s with key %s", artifact.name, key_fingerprint(public_hex)
        )
        return destination


class SignFileSigner:
    """Appends a kernel module signature using ``scripts/sign-file``.

    Parameters
    ----------
    sign_file:
        Path to the ``sign-file`` helper from the kernel headers.
    timeout:
        Per-invocation timeout in seconds.
    """

    def __init__(self, sign_file: Path, *, timeout: int = DEFAULT_TIMEOUT_SECONDS) -> None:
        self._sign_file = Path(sign_file)
        self._timeout = timeout

    def sign(self, artifact: Path, key: SigningKey, destination: Path) -> Path:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(artifact, destination)
        result = run_command(
            [
                self._sign_file,
                key.hash_algo,
                key.private_key,
                key.public_key,
                destination,
            ],
            timeout=self._timeout,
        )
        if not result.ok:
            destination.unlink(missing_ok=True)
            raise SignerError(f"sign-file {artifact.name}", result.detail)
        return destination


def signer_for(
    key: SigningKey,
    *,
    sign_file: Path,
    timeout: int = DEFAULT_TIMEOUT_SECONDS,
) -> ModuleSigner:
    """Return the signer matching ``key.backend``."""
    if key.backend == SignerBackend.ED25519:
        return Ed25519Signer()
    return SignFileSigner(sign_file, timeout=timeout)
