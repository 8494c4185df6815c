"""Per-module load parameters read from ``<config_dir>/<module>.conf``.

Each line of a module's file that holds anything other than whitespace is
one parameter token, passed verbatim (surrounding spaces included) to the
module loader in file order.  Empty and whitespace-only lines are skipped,
and a trailing CR is dropped.  A missing file is not an error: the module
simply loads with no parameters.
"""

from __future__ import annotations

import logging
from pathlib import Path

from kmodstack.models.params import ParameterSet

logger = logging.getLogger(__name__)

PARAMETER_FILE_SUFFIX = ".conf"


class ConfigError(RuntimeError):
    """Raised when a module's parameter file exists but cannot be used.

    Module-scoped: the caller decides whether to abort or continue.
    """

    def __init__(self, module: str, path: Path, detail: str) -> None:
        self.module = module
        self.path = path
        self.detail = detail
        super().__init__(f"{module}: reading parameter file {path} failed: {detail}")


class ParameterStore:
    """Loads and caches parameter tokens for each module.

    Parameters
    ----------
    config_dir:
        Directory holding one optional ``<module>.conf`` per module.
    """

    def __init__(self, config_dir: Path) -> None:
        self._dir = Path(config_dir)
        self._cache: dict[str, tuple[str, ...]] = {}

    @property
    def config_dir(self) -> Path:
        return self._dir

    def path_for(self, module: str) -> Path:
        return self._dir / f"{module}{PARAMETER_FILE_SUFFIX}"

    def load(self, module: str) -> tuple[str, ...]:
        """Read *module*'s parameter file, replacing any cached tokens."""
        path = self.path_for(module)
        tokens = self._read_tokens(module, path)
        self._cache[module] = tokens
        if tokens:
            logger.info("Parameters for %s: %s", module, " ".join(tokens))
        else:
            logger.info("Parameters for %s: none", module)
        return tokens

    def get(self, module: str) -> tuple[str, ...]:
        """Return the ordered tokens for *module*, loading on first use."""
        if module not in self._cache:
            return self.load(module)
        return self._cache[module]

    def parameter_set(self) -> ParameterSet:
        """Return an immutable snapshot of every module loaded so far."""
        return ParameterSet(parameters=dict(self._cache))

    @staticmethod
    def _read_tokens(module: str, path: Path) -> tuple[str, ...]:
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return ()
        except IsADirectoryError:
            raise ConfigError(module, path, "path is a directory") from None
        except OSError as exc:
            raise ConfigError(module, path, exc.strerror or str(exc)) from exc

        if b"\x00" in raw:
            raise ConfigError(module, path, "file contains NUL bytes (not text)")
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ConfigError(module, path, f"file is not UTF-8 text ({exc.reason})") from exc

        lines = (line.removesuffix("\r") for line in text.split("\n"))
        return tuple(line for line in lines if line.strip())
