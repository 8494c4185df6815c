"""Packaging stage — one complete, self-describing precompiled package.

Validates before anything is written:
- exactly one artifact per owned module in the graph (no missing, no
  duplicate, no unknown, no host-managed module);
- every artifact file exists;
- a module marked not signable is never signed, and the signed flag is
  uniform across the signable modules;
- a detached signature is carried only by a signed artifact, and its file
  exists.  Nothing is picked up from beside an artifact on disk.

The package is built at a temporary path and renamed into place only on
success, so a failed build never leaves a package behind.
"""

from __future__ import annotations

import logging
import os
import tarfile
from collections import Counter
from pathlib import Path

from kmodstack.bridge.crypto_bridge import SIGNATURE_SUFFIX
from kmodstack.bridge.packager import Packager, PackagerError, read_manifest
from kmodstack.core.hasher import sha256_file, sha256_hex
from kmodstack.core.module_graph import ModuleGraph
from kmodstack.models.package import ModuleArtifact, PackageEntry, PackageManifest

logger = logging.getLogger(__name__)


class PackagingError(RuntimeError):
    """Raised when the artifact set is incomplete or the package cannot be built."""

    def __init__(self, message: str, *, modules: list[str] | None = None) -> None:
        self.modules = modules or []
        super().__init__(message)


class PackagingStage:
    """Bundles compiled (and optionally signed) modules into a package.

    Parameters
    ----------
    graph:
        Source of the owned module set the package must cover.
    packager:
        The packaging primitive.
    output:
        Final package path.
    kernel_version:
        Recorded in the manifest for install-time matching.
    """

    def __init__(
        self,
        graph: ModuleGraph,
        packager: Packager,
        output: Path,
        *,
        kernel_version: str = "",
    ) -> None:
        self._graph = graph
        self._packager = packager
        self._output = Path(output)
        self._kernel_version = kernel_version
        self.manifest: PackageManifest | None = None

    @property
    def output(self) -> Path:
        return self._output

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, artifacts: list[ModuleArtifact]) -> None:
        """Raise ``PackagingError`` unless *artifacts* is exactly the owned set."""
        expected = [m.name for m in self._graph.owned_modules()]
        counts = Counter(a.module for a in artifacts)

        duplicates = sorted(m for m, n in counts.items() if n > 1)
        if duplicates:
            raise PackagingError(
                f"Duplicate artifacts for: {', '.join(duplicates)}", modules=duplicates
            )

        unknown = sorted(m for m in counts if m not in self._graph)
        if unknown:
            raise PackagingError(
                f"Artifacts for modules not in the stack: {', '.join(unknown)}",
                modules=unknown,
            )

        external = sorted(m for m in counts if self._graph.get(m).external)
        if external:
            raise PackagingError(
                f"Host-managed modules cannot be packaged: {', '.join(external)}",
                modules=external,
            )

        missing = [m for m in expected if m not in counts]
        if missing:
            raise PackagingError(
                f"Package would be missing modules: {', '.join(missing)}",
                modules=missing,
            )

        absent = [a.module for a in artifacts if not Path(a.path).is_file()]
        if absent:
            raise PackagingError(
                "Artifact files not found: "
                + ", ".join(f"{a.module} ({a.path})" for a in artifacts if a.module in absent),
                modules=absent,
            )

        unsignable = sorted(
            a.module for a in artifacts if a.signed and not self._graph.get(a.module).signable
        )
        if unsignable:
            raise PackagingError(
                f"Modules marked not signable were signed: {', '.join(unsignable)}",
                modules=unsignable,
            )

        signable = [a for a in artifacts if self._graph.get(a.module).signable]
        if len({a.signed for a in signable}) > 1:
            unsigned = sorted(a.module for a in signable if not a.signed)
            raise PackagingError(
                f"Mixed signed and unsigned artifacts; unsigned: {', '.join(unsigned)}",
                modules=unsigned,
            )

        stray = sorted(a.module for a in artifacts if a.signature is not None and not a.signed)
        if stray:
            raise PackagingError(
                f"Detached signatures on unsigned artifacts: {', '.join(stray)}",
                modules=stray,
            )

        missing_sigs = sorted(
            a.module for a in artifacts
            if a.signature is not None and not Path(a.signature).is_file()
        )
        if missing_sigs:
            raise PackagingError(
                f"Signature files not found: {', '.join(missing_sigs)}",
                modules=missing_sigs,
            )

    # ------------------------------------------------------------------
    # Packaging
    # ------------------------------------------------------------------

    def build_manifest(self, artifacts: list[ModuleArtifact]) -> PackageManifest:
        order = {name: i for i, name in enumerate(self._graph.module_names)}
        entries = [
            PackageEntry(
                module=a.module,
                file_name=Path(a.path).name,
                signed=a.signed,
                sha256=sha256_file(Path(a.path)),
                size_bytes=Path(a.path).stat().st_size,
                signature_file=_signature_member(a),
            )
            for a in sorted(artifacts, key=lambda a: order[a.module])
        ]
        return PackageManifest(kernel_version=self._kernel_version, entries=entries)

    def package(self, artifacts: list[ModuleArtifact]) -> Path:
        """Validate *artifacts* and build the package; return its path."""
        self.validate(artifacts)
        manifest = self.build_manifest(artifacts)
        files: dict[str, Path] = {}
        for a in artifacts:
            files[Path(a.path).name] = Path(a.path)
            if a.signature is not None:
                files[_signature_member(a)] = Path(a.signature)

        self._output.parent.mkdir(parents=True, exist_ok=True)
        partial = self._output.with_name(self._output.name + ".partial")
        partial.unlink(missing_ok=True)
        try:
            self._packager.build(manifest, files, partial)
        except (PackagerError, OSError, tarfile.TarError) as exc:
            partial.unlink(missing_ok=True)
            raise PackagingError(f"packaging primitive failed: {exc}") from exc
        os.replace(partial, self._output)

        self.manifest = manifest
        logger.info(
            "Packaged %d modules (%s) into %s",
            len(manifest.entries),
            "signed" if manifest.signed else "unsigned",
            self._output,
        )
        return self._output


def _signature_member(artifact: ModuleArtifact) -> str:
    if artifact.signature is None:
        return ""
    return Path(artifact.path).name + SIGNATURE_SUFFIX


def verify_package(package: Path) -> PackageManifest:
    """Re-hash every entry of a tarball package against its manifest.

    An entry whose detached signature member is missing also fails.
    Returns the manifest; raises ``PackagingError`` on any mismatch.
    """
    try:
        manifest = read_manifest(package)
    except (PackagerError, OSError, ValueError, tarfile.TarError) as exc:
        raise PackagingError(f"cannot read package {package}: {exc}") from exc

    mismatched: list[str] = []
    with tarfile.open(package, "r:gz") as tar:
        names = set(tar.getnames())
        for entry in manifest.entries:
            try:
                member = tar.extractfile(entry.file_name)
            except KeyError:
                member = None
            if member is None or sha256_hex(member.read()) != entry.sha256:
                mismatched.append(entry.module)
                continue
            if entry.signature_file and entry.signature_file not in names:
                mismatched.append(entry.module)
    if mismatched:
        raise PackagingError(
            f"Package entries failed verification: {', '.join(mismatched)}",
            modules=mismatched,
        )
    return manifest
