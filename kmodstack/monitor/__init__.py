"""Rich rendering of plans, residency and lifecycle results."""

from kmodstack.monitor.renderer import StackRenderer

__all__ = ["StackRenderer"]
