"""Per-module load parameter models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ParameterSet(BaseModel):
    """Ordered parameter tokens for each module.

    Tokens are passed verbatim to the module loader; a module with no
    configuration file maps to an empty tuple.
    """

    model_config = ConfigDict(frozen=True)

    parameters: dict[str, tuple[str, ...]] = {}

    def get(self, module: str) -> tuple[str, ...]:
        return self.parameters.get(module, ())

    def __contains__(self, module: object) -> bool:
        return module in self.parameters
