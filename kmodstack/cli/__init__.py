"""kmodstack CLI — Typer-based command-line interface.

Provides the ``kmodstack`` command with the container process modes
(install, run) plus load, unload, plan, status and keygen.

All output uses Rich for formatted terminal display.
"""
