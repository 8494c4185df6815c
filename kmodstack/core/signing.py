"""Signing pipeline — all-or-nothing module signing before packaging.

Without a signing context the pipeline is a no-op and every artifact is
marked unsigned.  With one, every signable artifact must sign: a package
mixing signed and unsigned modules is useless to secure boot, so any single
failure fails the whole pipeline.  Stale staged copies and detached
signatures from an earlier run are removed first, so a signature is only
attached to an artifact when this run wrote it.

Artifacts are independent, so they are signed on a bounded thread pool.
``sign_all`` returns only after every worker has finished.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from kmodstack.bridge.crypto_bridge import (
    SIGNATURE_SUFFIX,
    ModuleSigner,
    SignerError,
    detached_signature_path,
    signer_for,
)
from kmodstack.bridge.shell import DEFAULT_TIMEOUT_SECONDS
from kmodstack.models.package import ModuleArtifact
from kmodstack.models.signing import SigningContext, SigningKey

logger = logging.getLogger(__name__)

DEFAULT_SIGN_WORKERS = 4


class SigningError(RuntimeError):
    """Raised when a key is configured and one or more artifacts fail to sign.

    ``failures`` maps module name to the failure message.
    """

    def __init__(self, failures: dict[str, str]) -> None:
        self.failures = dict(sorted(failures.items()))
        parts = [f"{module}: {msg}" for module, msg in self.failures.items()]
        super().__init__(
            f"Signing failed for {len(self.failures)} module(s): " + "; ".join(parts)
        )

    @property
    def modules(self) -> list[str]:
        return list(self.failures)


class SigningPipeline:
    """Signs compiled module artifacts into a staging directory.

    Parameters
    ----------
    context:
        Signing key material, or ``None`` to package unsigned.
    staging_dir:
        Where signed copies are written.
    signer:
        Signer backend; chosen from ``context.key.backend`` when omitted.
    sign_file:
        Path to the kernel ``sign-file`` helper (sign-file backend only).
    max_workers:
        Upper bound on concurrent signing jobs.
    """

    def __init__(
        self,
        context: SigningContext | None,
        staging_dir: Path,
        *,
        signer: ModuleSigner | None = None,
        sign_file: Path = Path("scripts/sign-file"),
        max_workers: int = DEFAULT_SIGN_WORKERS,
        timeout: int = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._context = context
        self._staging = Path(staging_dir)
        self._max_workers = max(1, max_workers)
        if signer is None and context is not None:
            signer = signer_for(context.key, sign_file=sign_file, timeout=timeout)
        self._signer = signer

    @property
    def enabled(self) -> bool:
        return self._context is not None

    @property
    def context(self) -> SigningContext | None:
        """The signing context, including per-module results after ``sign_all``."""
        return self._context

    def sign(self, artifact_path: Path, key: SigningKey) -> Path:
        """Sign one artifact into the staging directory and return its path."""
        if self._signer is None:
            raise SigningError({artifact_path.stem: "no signer configured"})
        destination = self._staging / artifact_path.name
        return self._signer.sign(Path(artifact_path), key, destination)

    def sign_all(
        self,
        artifacts: list[ModuleArtifact],
        *,
        unsignable: frozenset[str] = frozenset(),
    ) -> list[ModuleArtifact]:
        """Sign every artifact, or none when no key is configured.

        Modules named in *unsignable* are passed through unsigned.
        Returns artifacts pointing at the signed copies, in input order.
        Raises ``SigningError`` naming every module that failed.
        """
        if self._context is None:
            logger.info("No signing key configured; packaging %d modules unsigned", len(artifacts))
            return [a.model_copy(update={"signed": False, "signature": None}) for a in artifacts]

        key = self._context.key
        to_sign = [a for a in artifacts if a.module not in unsignable]
        logger.info(
            "Signing %d modules with %s (up to %d workers)",
            len(to_sign), key.backend.value, self._max_workers,
        )
        self._clear_staging(to_sign)

        workers = min(self._max_workers, max(1, len(to_sign)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="kmodsign") as pool:
            futures = {
                a.module: pool.submit(self.sign, a.path, key) for a in to_sign
            }
        # Leaving the with-block waits for every worker.

        signed: list[ModuleArtifact] = []
        failures: dict[str, str] = {}
        for artifact in artifacts:
            if artifact.module not in futures:
                signed.append(artifact.model_copy(update={"signed": False, "signature": None}))
                continue
            try:
                path = futures[artifact.module].result()
            except (SignerError, OSError) as exc:
                failures[artifact.module] = str(exc)
                continue
            signature = detached_signature_path(path)
            signed.append(artifact.model_copy(update={
                "path": path,
                "signed": True,
                "signature": signature if signature.is_file() else None,
            }))

        self._context = self._context.with_results(
            {a.module: a.module not in failures for a in to_sign}
        )
        if failures:
            for module, msg in sorted(failures.items()):
                logger.error("%s: %s", module, msg)
            raise SigningError(failures)

        logger.info("Signed %d modules", len(to_sign))
        return signed

    def _clear_staging(self, artifacts: list[ModuleArtifact]) -> None:
        """Remove staged copies and signatures left by an earlier run."""
        self._staging.mkdir(parents=True, exist_ok=True)
        names = {Path(a.path).name for a in artifacts}
        sources = {Path(a.path).resolve() for a in artifacts}
        for path in self._staging.iterdir():
            if not path.is_file() or path.resolve() in sources:
                continue
            if path.name in names or path.name.endswith(SIGNATURE_SUFFIX):
                path.unlink()
