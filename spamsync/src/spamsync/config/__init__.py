"""spamsync configuration and persistence package.

What:
  Provide a cohesive import surface for configuration loading, validation, and
  checkpoint persistence.

Why:
  Centralising the exports shields callers from the internal layout and makes
  sure every consumer goes through the validated schema types.

Interfaces:
  - get_runtime_config / load_runtime_config / reset_runtime_config /
    parse_runtime_config: resolve ``config.json`` into a cached model.
  - RuntimeConfig / ValidationError: Pydantic model and error type.
  - ConfigLoadError / RuntimeConfigError: loader failures.
  - CheckpointStore / JsonCheckpointStore: mailbox cursor persistence.
"""

from .checkpoint_store import CheckpointStore, JsonCheckpointStore
from .loader import (
    ConfigLoadError,
    RuntimeConfigError,
    get_runtime_config,
    load_runtime_config,
    parse_runtime_config,
    reset_runtime_config,
)
from .schema import RuntimeConfig, ValidationError

__all__ = [
    "CheckpointStore",
    "JsonCheckpointStore",
    "ConfigLoadError",
    "RuntimeConfigError",
    "get_runtime_config",
    "load_runtime_config",
    "parse_runtime_config",
    "reset_runtime_config",
    "RuntimeConfig",
    "ValidationError",
]
