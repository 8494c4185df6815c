"""Packaging primitives — turn staged module files into one package file.

``TarballPackager`` writes a gzipped tarball with a ``manifest.json`` at
its root.  ``CommandPackager`` hands the manifest to an external tool
(for example the vendor's precompiled-package builder) instead.
"""

from __future__ import annotations

import io
import json
import logging
import shlex
import tarfile
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from kmodstack.bridge.shell import DEFAULT_TIMEOUT_SECONDS, run_command
from kmodstack.models.package import PackageManifest

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"


class PackagerError(RuntimeError):
    """Raised by a packaging primitive that could not produce its output."""


@runtime_checkable
class Packager(Protocol):
    """Produces one installable package file from staged artifacts."""

    def build(
        self, manifest: PackageManifest, files: dict[str, Path], output: Path
    ) -> None:
        """Write the package to *output*.

        *files* maps every member named by the manifest (each entry's
        ``file_name`` and, when set, its ``signature_file``) to its staged
        path.  Nothing outside the manifest is packaged.
        """
        ...


def manifest_json(manifest: PackageManifest) -> bytes:
    return json.dumps(manifest.model_dump(mode="json"), indent=2, sort_keys=True).encode("utf-8")


def manifest_members(manifest: PackageManifest) -> list[str]:
    """Package member names in manifest order, signatures after their module."""
    members: list[str] = []
    for entry in manifest.entries:
        members.append(entry.file_name)
        if entry.signature_file:
            members.append(entry.signature_file)
    return members


class TarballPackager:
    """Gzipped tarball: ``manifest.json`` plus the members the manifest names."""

    def build(
        self, manifest: PackageManifest, files: dict[str, Path], output: Path
    ) -> None:
        payload = manifest_json(manifest)
        with tarfile.open(output, "w:gz") as tar:
            info = tarfile.TarInfo(MANIFEST_NAME)
            info.size = len(payload)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(payload))
            for member in manifest_members(manifest):
                tar.add(files[member], arcname=member, recursive=False)


class CommandPackager:
    """Delegates packaging to an external command.

    The command is invoked as ``<command...> <manifest.json> <output>``; the
    manifest it receives carries an absolute ``path`` for every entry, and a
    ``signature_path`` for entries with a detached signature.
    """

    def __init__(self, command: str, *, timeout: int = DEFAULT_TIMEOUT_SECONDS) -> None:
        self._argv = shlex.split(command)
        if not self._argv:
            raise ValueError("packager command is empty")
        self._timeout = timeout

    def build(
        self, manifest: PackageManifest, files: dict[str, Path], output: Path
    ) -> None:
        document = manifest.model_dump(mode="json")
        for entry in document["entries"]:
            entry["path"] = str(Path(files[entry["file_name"]]).resolve())
            if entry["signature_file"]:
                entry["signature_path"] = str(Path(files[entry["signature_file"]]).resolve())

        with tempfile.TemporaryDirectory(prefix="kmodstack-") as tmp:
            manifest_path = Path(tmp) / MANIFEST_NAME
            manifest_path.write_text(json.dumps(document, indent=2, sort_keys=True))
            result = run_command(
                [*self._argv, manifest_path, output], timeout=self._timeout
            )
        if not result.ok:
            raise PackagerError(f"{self._argv[0]} failed: {result.detail}")
        if not output.exists():
            raise PackagerError(f"{self._argv[0]} exited 0 but wrote no {output}")


def read_manifest(package: Path) -> PackageManifest:
    """Read the manifest embedded in a tarball package."""
    with tarfile.open(package, "r:gz") as tar:
        try:
            member = tar.extractfile(MANIFEST_NAME)
        except KeyError:
            member = None
        if member is None:
            raise PackagerError(f"{package} has no {MANIFEST_NAME}")
        return PackageManifest.model_validate_json(member.read())
