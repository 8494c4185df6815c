"""Thin subprocess wrapper for invoking external tools.

Every tool this package drives (modprobe, rmmod, sign-file, packaging
tools) goes through ``run_command`` so invocations are logged the same
way and never raise on a non-zero exit.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120


class CommandResult(BaseModel):
    """Captured outcome of an external command."""

    model_config = ConfigDict(frozen=True)

    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command_line(self) -> str:
        return shlex.join(self.argv)

    @property
    def detail(self) -> str:
        """Best single-line explanation of a failure."""
        text = (self.stderr or self.stdout).strip()
        return text.splitlines()[-1] if text else f"exit status {self.returncode}"


def run_command(
    argv: Sequence[str], *, timeout: int = DEFAULT_TIMEOUT_SECONDS
) -> CommandResult:
    """Run *argv* and capture its output.

    A missing executable, one that cannot be executed, or a timeout is
    reported as a failed result (return code 127 / 126 / 124, matching the
    shell conventions) rather than raised, so callers handle every failure
    through one path.  Undecodable output bytes are replaced, not raised.
    """
    argv = tuple(str(a) for a in argv)
    logger.debug("Running: %s", shlex.join(argv))
    try:
        proc = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError:
        return CommandResult(argv=argv, returncode=127, stderr=f"{argv[0]}: command not found")
    except OSError as exc:
        return CommandResult(
            argv=argv, returncode=126, stderr=f"{argv[0]}: {exc.strerror or exc}"
        )
    except subprocess.TimeoutExpired:
        logger.error("Command timed out after %ss: %s", timeout, shlex.join(argv))
        return CommandResult(argv=argv, returncode=124, stderr=f"timed out after {timeout}s")

    result = CommandResult(
        argv=argv,
        returncode=proc.returncode,
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
    )
    if not result.ok:
        logger.debug("Command failed (%d): %s: %s", result.returncode, result.command_line, result.detail)
    return result
