"""kmodstack: GPU kernel-driver stack lifecycle for privileged containers.

Builds a precompiled package of the driver's kernel modules (optionally
signed for secure boot), loads the modules in dependency order with
per-module parameters, and unloads them in reverse order on shutdown.
"""

__version__ = "0.1.0"
__description__ = "GPU kernel-driver stack lifecycle for driver containers"

from kmodstack.core.module_graph import ModuleGraph
from kmodstack.core.orchestrator import StackOrchestrator

__all__ = ["ModuleGraph", "StackOrchestrator", "__version__"]
