"""Environment resolution."""

from .resolver import (
    EnvironmentResolver,
    EnvironmentStrategy,
    FileEnvironmentStrategy,
    EnvVarEnvironmentStrategy,
    mask_connection_string,
)

__all__ = [
    "EnvironmentResolver",
    "EnvironmentStrategy",
    "FileEnvironmentStrategy",
    "EnvVarEnvironmentStrategy",
    "mask_connection_string",
]
