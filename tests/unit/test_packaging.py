"""Tests for the PackagingStage and package verification."""

from __future__ import annotations

import io
import json
import tarfile
from pathlib import Path

import pytest

from kmodstack.bridge.packager import MANIFEST_NAME, PackagerError, TarballPackager, read_manifest
from kmodstack.core.module_graph import ModuleGraph
from kmodstack.core.packaging import PackagingError, PackagingStage, verify_package
from kmodstack.models.modules import ModuleDefinition
from kmodstack.models.package import ModuleArtifact, PackageManifest

NVIDIA = ["base", "modeset", "uvm", "drm", "peermem"]


class _FailingPackager:
    def build(self, manifest: PackageManifest, files: dict[str, Path], output: Path) -> None:
        output.write_bytes(b"half a package")
        raise PackagerError("disk full")


@pytest.fixture
def output(tmp_path: Path) -> Path:
    return tmp_path / "out" / "modules.tar.gz"


@pytest.fixture
def stage(nvidia_graph: ModuleGraph, output: Path) -> PackagingStage:
    return PackagingStage(nvidia_graph, TarballPackager(), output, kernel_version="6.8.0-test")


class TestValidation:
    def test_missing_module_rejected(self, stage: PackagingStage, output: Path, make_artifacts):
        artifacts = make_artifacts(["base", "modeset", "drm", "peermem"])
        with pytest.raises(PackagingError, match="missing") as excinfo:
            stage.package(artifacts)
        assert excinfo.value.modules == ["uvm"]
        assert not output.exists()

    def test_duplicate_rejected(self, stage: PackagingStage, output: Path, make_artifacts):
        artifacts = make_artifacts(NVIDIA)
        artifacts.append(artifacts[1])
        with pytest.raises(PackagingError, match="Duplicate") as excinfo:
            stage.package(artifacts)
        assert excinfo.value.modules == ["modeset"]
        assert not output.exists()

    def test_unknown_module_rejected(self, stage: PackagingStage, make_artifacts):
        with pytest.raises(PackagingError, match="not in the stack") as excinfo:
            stage.package(make_artifacts([*NVIDIA, "nouveau"]))
        assert excinfo.value.modules == ["nouveau"]

    def test_external_module_rejected(self, tmp_path: Path, make_artifacts):
        graph = ModuleGraph([
            ModuleDefinition(name="drm", external=True),
            ModuleDefinition(name="gpu", dependencies=["drm"]),
        ])
        stage = PackagingStage(graph, TarballPackager(), tmp_path / "p.tar.gz")
        with pytest.raises(PackagingError, match="Host-managed") as excinfo:
            stage.package(make_artifacts(["drm", "gpu"]))
        assert excinfo.value.modules == ["drm"]

    def test_absent_file_rejected(self, stage: PackagingStage, output: Path, make_artifacts):
        artifacts = make_artifacts(NVIDIA)
        artifacts[2].path.unlink()
        with pytest.raises(PackagingError, match="not found") as excinfo:
            stage.package(artifacts)
        assert excinfo.value.modules == ["uvm"]
        assert not output.exists()

    def test_mixed_signing_rejected(self, stage: PackagingStage, make_artifacts):
        artifacts = [
            a.model_copy(update={"signed": a.module != "drm"}) for a in make_artifacts(NVIDIA)
        ]
        with pytest.raises(PackagingError, match="Mixed") as excinfo:
            stage.package(artifacts)
        assert excinfo.value.modules == ["drm"]


class TestPackage:
    def test_complete_unsigned_package(self, stage: PackagingStage, output: Path, make_artifacts):
        path = stage.package(make_artifacts(list(reversed(NVIDIA))))
        assert path == output and output.is_file()

        manifest = read_manifest(output)
        assert manifest.modules == NVIDIA  # graph order, not input order
        assert manifest.kernel_version == "6.8.0-test"
        assert not manifest.signed
        assert stage.manifest is not None and stage.manifest.modules == NVIDIA

        with tarfile.open(output, "r:gz") as tar:
            names = set(tar.getnames())
        assert names == {MANIFEST_NAME, *(f"{m}.ko" for m in NVIDIA)}

    def test_signed_package_carries_signatures(self, stage, output: Path, make_artifacts):
        artifacts = []
        for a in make_artifacts(NVIDIA):
            sig = a.path.with_name(a.path.name + ".sig")
            sig.write_text("ab" * 32 + "\n")
            artifacts.append(a.model_copy(update={"signed": True, "signature": sig}))
        stage.package(artifacts)

        manifest = read_manifest(output)
        assert manifest.signed
        assert manifest.entry("uvm").signature_file == "uvm.ko.sig"
        with tarfile.open(output, "r:gz") as tar:
            assert "uvm.ko.sig" in tar.getnames()

    def test_stale_signature_beside_artifact_not_packaged(
        self, stage, output: Path, make_artifacts
    ):
        artifacts = make_artifacts(NVIDIA)
        artifacts[0].path.with_name("base.ko.sig").write_text("cd" * 32 + "\n")
        stage.package(artifacts)

        with tarfile.open(output, "r:gz") as tar:
            names = tar.getnames()
        assert "base.ko.sig" not in names
        assert set(names) == {MANIFEST_NAME, *(f"{m}.ko" for m in NVIDIA)}
        assert read_manifest(output).entry("base").signature_file == ""

    def test_signature_on_unsigned_artifact_rejected(self, stage, output: Path, make_artifacts):
        artifacts = make_artifacts(NVIDIA)
        sig = artifacts[1].path.with_name("modeset.ko.sig")
        sig.write_text("ab" * 32 + "\n")
        artifacts[1] = artifacts[1].model_copy(update={"signature": sig})
        with pytest.raises(PackagingError, match="unsigned artifacts") as excinfo:
            stage.package(artifacts)
        assert excinfo.value.modules == ["modeset"]
        assert not output.exists()

    def test_missing_signature_file_rejected(self, stage, output: Path, make_artifacts):
        artifacts = [
            a.model_copy(update={
                "signed": True,
                "signature": a.path.with_name(a.path.name + ".sig"),
            })
            for a in make_artifacts(NVIDIA)
        ]
        for a in artifacts[1:]:
            a.signature.write_text("ab" * 32 + "\n")
        with pytest.raises(PackagingError, match="Signature files not found") as excinfo:
            stage.package(artifacts)
        assert excinfo.value.modules == ["base"]


class TestSignability:
    @pytest.fixture
    def graph(self) -> ModuleGraph:
        return ModuleGraph([
            ModuleDefinition(name="gpu", priority=1),
            ModuleDefinition(name="vendor-blob", priority=2, dependencies=["gpu"], signable=False),
        ])

    def test_signed_unsignable_module_rejected(self, graph, tmp_path: Path, make_artifacts):
        stage = PackagingStage(graph, TarballPackager(), tmp_path / "p.tar.gz")
        artifacts = [a.model_copy(update={"signed": True}) for a in make_artifacts(["gpu", "vendor-blob"])]
        with pytest.raises(PackagingError, match="not signable") as excinfo:
            stage.package(artifacts)
        assert excinfo.value.modules == ["vendor-blob"]

    def test_unsignable_module_may_stay_unsigned(self, graph, tmp_path: Path, make_artifacts):
        stage = PackagingStage(graph, TarballPackager(), tmp_path / "p.tar.gz")
        gpu, blob = make_artifacts(["gpu", "vendor-blob"])
        package = stage.package([gpu.model_copy(update={"signed": True}), blob])

        manifest = read_manifest(package)
        assert manifest.signed
        assert manifest.entry("gpu").signed
        assert not manifest.entry("vendor-blob").signed


class TestPackageFailures:
    def test_no_partial_left_on_failure(self, nvidia_graph, output: Path, make_artifacts):
        stage = PackagingStage(nvidia_graph, _FailingPackager(), output)
        with pytest.raises(PackagingError, match="disk full"):
            stage.package(make_artifacts(NVIDIA))
        assert not output.exists()
        assert list(output.parent.iterdir()) == []
        assert stage.manifest is None

    def test_failure_keeps_previous_package(self, nvidia_graph, output: Path, make_artifacts):
        output.parent.mkdir(parents=True)
        output.write_bytes(b"previous")
        stage = PackagingStage(nvidia_graph, _FailingPackager(), output)
        with pytest.raises(PackagingError):
            stage.package(make_artifacts(NVIDIA))
        assert output.read_bytes() == b"previous"


class TestVerifyPackage:
    def test_verifies_clean_package(self, stage: PackagingStage, output: Path, make_artifacts):
        stage.package(make_artifacts(NVIDIA))
        manifest = verify_package(output)
        assert manifest.modules == NVIDIA
        assert manifest.entry("uvm").size_bytes > 0

    def test_detects_tampered_entry(self, stage: PackagingStage, output: Path, make_artifacts):
        stage.package(make_artifacts(NVIDIA))
        manifest = read_manifest(output)

        tampered = output.with_name("tampered.tar.gz")
        with tarfile.open(output, "r:gz") as src, tarfile.open(tampered, "w:gz") as dst:
            for member in src.getmembers():
                data = src.extractfile(member).read()
                if member.name == "drm.ko":
                    data = b"not the module"
                    member.size = len(data)
                dst.addfile(member, io.BytesIO(data))

        with pytest.raises(PackagingError) as excinfo:
            verify_package(tampered)
        assert excinfo.value.modules == ["drm"]
        assert manifest.entry("drm").sha256

    def test_missing_manifest(self, tmp_path: Path):
        package = tmp_path / "bare.tar.gz"
        with tarfile.open(package, "w:gz") as tar:
            data = b"x"
            info = tarfile.TarInfo("base.ko")
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
        with pytest.raises(PackagingError, match="cannot read"):
            verify_package(package)

    def test_invalid_manifest(self, tmp_path: Path):
        package = tmp_path / "bad.tar.gz"
        with tarfile.open(package, "w:gz") as tar:
            data = json.dumps({"entries": "nope"}).encode()
            info = tarfile.TarInfo(MANIFEST_NAME)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
        with pytest.raises(PackagingError, match="cannot read"):
            verify_package(package)

    def test_detects_missing_signature_member(
        self, stage: PackagingStage, output: Path, make_artifacts
    ):
        artifacts = []
        for a in make_artifacts(NVIDIA):
            sig = a.path.with_name(a.path.name + ".sig")
            sig.write_text("ab" * 32 + "\n")
            artifacts.append(a.model_copy(update={"signed": True, "signature": sig}))
        stage.package(artifacts)

        stripped = output.with_name("stripped.tar.gz")
        with tarfile.open(output, "r:gz") as src, tarfile.open(stripped, "w:gz") as dst:
            for member in src.getmembers():
                if member.name != "peermem.ko.sig":
                    dst.addfile(member, src.extractfile(member))

        with pytest.raises(PackagingError) as excinfo:
            verify_package(stripped)
        assert excinfo.value.modules == ["peermem"]
