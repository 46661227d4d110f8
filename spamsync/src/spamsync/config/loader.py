"""Strict loader for the spamsync runtime configuration.

What:
  Locate, parse, validate and cache ``config.json``: IMAP credentials, the three
  tracked mailbox paths, SpamAssassin thresholds and polling intervals.

Why:
  Configuration lives outside the package and is edited by hand. Centralising
  discovery and validation means every component receives an immutable,
  defaulted :class:`~spamsync.config.schema.RuntimeConfig` and no component ever
  re-checks invariants such as ``minSpamScore > maxHamScore``.

How:
  Resolve candidate file locations based on explicit parameters, the
  ``SPAMSYNC_CONFIG_PATH`` environment variable, and defaults. Parse JSON files
  with :mod:`json` and anything else with PyYAML's ``safe_load``, then validate
  the mapping with Pydantic.

Interfaces:
  - :func:`load_runtime_config` / :func:`get_runtime_config` /
    :func:`reset_runtime_config`: manage discovery and caching.
  - :func:`parse_runtime_config`: validate an in-memory mapping.
  - :class:`ConfigLoadError`, :class:`RuntimeConfigError`.

Invariants:
  - All external payloads pass strict Pydantic validation before they are
    returned to callers.
  - The cache respects explicit reload requests and the precedence order of
    candidate paths.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Iterable, Optional, Tuple

import yaml
from pydantic import ValidationError as _PydanticValidationError

from .schema import RuntimeConfig


class ConfigLoadError(Exception):
    """Base error for configuration parsing or validation failures.

    What:
      Represent fatal issues encountered while reading or validating
      configuration documents.

    Why:
      Grouping failures under a single type allows callers to handle user input
      mistakes separately from infrastructure errors such as IMAP connectivity
      problems.
    """


class RuntimeConfigError(ConfigLoadError):
    """Error raised when ``config.json`` cannot be located, parsed or validated."""


_CONFIG_ENV = "SPAMSYNC_CONFIG_PATH"
_DEFAULT_LOCATIONS: Tuple[Path, ...] = (
    Path("data/config.json"),
    Path("/etc/spamsync/config.json"),
)
_RUNTIME_CACHE: Optional[Tuple[Path, RuntimeConfig]] = None


def _candidate_paths(path: Optional[Path]) -> Iterable[Path]:
    """Yield configuration file locations in priority order.

    What:
      Produce the ordered list of paths that should be inspected for the
      configuration file.

    How:
      Accumulate deduplicated :class:`~pathlib.Path` objects by checking the
      explicit argument, the ``SPAMSYNC_CONFIG_PATH`` environment variable, and
      the default locations. Paths are expanded to handle ``~`` resolutions.

    Args:
      path: Explicit path requested by the caller, or ``None`` to rely on
        environment/defaults.

    Yields:
      Candidate paths ordered from most specific to least specific.
    """

    seen: set[Path] = set()
    if path is not None:
        candidate = path.expanduser()
        seen.add(candidate)
        yield candidate
    env_path = os.environ.get(_CONFIG_ENV)
    if env_path:
        candidate = Path(env_path).expanduser()
        if candidate not in seen:
            seen.add(candidate)
            yield candidate
    for default in _DEFAULT_LOCATIONS:
        candidate = default.expanduser()
        if candidate not in seen:
            seen.add(candidate)
            yield candidate


def _parse_config_payload(text: str, source: Path) -> dict[str, Any]:
    """Parse configuration text into a dictionary payload.

    Args:
      text: Raw configuration contents.
      source: Path to the file being parsed, used for the format choice and
        diagnostics.

    Returns:
      A dictionary representing the configuration payload.

    Raises:
      RuntimeConfigError: If the file cannot be parsed or does not contain a
      mapping.
    """

    try:
        if source.suffix.lower() == ".json":
            payload = json.loads(text) if text.strip() else {}
        else:
            payload = yaml.safe_load(text) or {}
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise RuntimeConfigError(f"Invalid configuration syntax in {source}: {exc}") from exc
    if not isinstance(payload, dict):
        raise RuntimeConfigError(f"{source} must contain a mapping at the top-level")
    return payload


def parse_runtime_config(payload: dict[str, Any]) -> RuntimeConfig:
    """Validate an already-decoded configuration mapping.

    Raises:
      RuntimeConfigError: If the payload violates the schema or one of its
        invariants.
    """

    try:
        return RuntimeConfig.model_validate(payload)
    except _PydanticValidationError as exc:
        raise RuntimeConfigError(f"Invalid configuration: {exc}") from exc


def _load_runtime_from_path(path: Path) -> RuntimeConfig:
    """Load and validate the configuration from a specific path.

    What:
      Read the file at ``path`` and convert it into a validated
      :class:`RuntimeConfig` model.

    How:
      Read the file contents, parse them via :func:`_parse_config_payload`, and
      validate using :func:`parse_runtime_config`. Filesystem failures are
      wrapped in :class:`RuntimeConfigError` with the offending path.
    """

    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise RuntimeConfigError(f"Configuration file missing: {path}") from exc
    except OSError as exc:  # pragma: no cover - filesystem surface
        raise RuntimeConfigError(f"Unable to read configuration file {path}: {exc}") from exc
    return parse_runtime_config(_parse_config_payload(text, path))


def load_runtime_config(
    path: Optional[Path | str] = None,
    *,
    reload: bool = False,
) -> RuntimeConfig:
    """Resolve, parse, and cache the runtime configuration.

    What:
      Locate the configuration file using the precedence chain, parse it, and
      return a validated :class:`RuntimeConfig` instance.

    Why:
      The CLI and the wiring helpers both need the settings; caching avoids
      re-reading the file while ``reload`` enables deterministic refreshes in
      tests.

    Args:
      path: Optional explicit location of the configuration file.
      reload: When ``True`` forces a fresh load bypassing the cache.

    Returns:
      The validated runtime configuration.

    Raises:
      RuntimeConfigError: If no suitable configuration file can be located or
      validated.
    """

    global _RUNTIME_CACHE

    requested_path = Path(path).expanduser() if isinstance(path, (str, Path)) else None
    if not reload and _RUNTIME_CACHE is not None:
        cached_path, cached_config = _RUNTIME_CACHE
        if requested_path is None or cached_path == requested_path:
            return cached_config

    searched: list[str] = []
    for candidate in _candidate_paths(requested_path):
        if not candidate.exists():
            searched.append(str(candidate))
            continue
        config = _load_runtime_from_path(candidate)
        _RUNTIME_CACHE = (candidate, config)
        return config

    locations = ", ".join(searched) if searched else "<none>"
    raise RuntimeConfigError(f"Unable to locate config.json (searched: {locations})")


def get_runtime_config() -> RuntimeConfig:
    """Return the cached runtime configuration, loading it on demand."""

    return load_runtime_config()


def reset_runtime_config() -> None:
    """Clear the runtime configuration cache."""

    global _RUNTIME_CACHE
    _RUNTIME_CACHE = None
