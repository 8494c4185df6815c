"""kmodstack data models — all Pydantic v2, all frozen (immutable)."""

from kmodstack.models.kernel import PrimitiveResult, Residency, UnloadStatus
from kmodstack.models.modules import (
    DEFAULT_MODULE_DEFINITIONS,
    VALID_TRANSITIONS,
    ModuleDefinition,
    ModuleState,
    ModuleTransition,
    normalize_module_name,
    stack_definitions,
)
from kmodstack.models.package import ModuleArtifact, PackageEntry, PackageManifest
from kmodstack.models.params import ParameterSet
from kmodstack.models.plans import LoadPlan, UnloadPlan
from kmodstack.models.results import LoadResult, ModuleOutcome, UnloadResult
from kmodstack.models.signing import SignerBackend, SigningContext, SigningKey

__all__ = [
    # modules
    "ModuleState",
    "ModuleDefinition",
    "ModuleTransition",
    "VALID_TRANSITIONS",
    "DEFAULT_MODULE_DEFINITIONS",
    "normalize_module_name",
    "stack_definitions",
    # plans
    "LoadPlan",
    "UnloadPlan",
    # params
    "ParameterSet",
    # signing
    "SignerBackend",
    "SigningKey",
    "SigningContext",
    # packaging
    "ModuleArtifact",
    "PackageEntry",
    "PackageManifest",
    # kernel
    "Residency",
    "UnloadStatus",
    "PrimitiveResult",
    # results
    "ModuleOutcome",
    "LoadResult",
    "UnloadResult",
]
