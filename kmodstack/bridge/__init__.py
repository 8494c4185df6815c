"""Boundaries to the outside world: kernel, signing tools, packagers."""
