"""Pytest configuration shared by every suite.

What:
  Establish project import paths and reset the cached runtime configuration
  around every test.

Why:
  Tests import ``spamsync`` straight from the source tree rather than an
  installed wheel, and the loader keeps a module-level cache that must not leak
  from one test to the next.

How:
  Prepend ``spamsync/src`` to ``sys.path`` when present, point
  ``SPAMSYNC_CONFIG_PATH`` at the canned fixture, and clear the cache before and
  after each test.

Interfaces:
  :func:`runtime_config` (autouse fixture), :func:`config_payload`.
"""

import copy
import json
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "spamsync" / "src"
if SRC_DIR.exists():
    sys.path.insert(0, str(SRC_DIR))

import pytest

from spamsync.config.loader import reset_runtime_config

CONFIG_PATH = Path(__file__).resolve().parent / "data" / "config.json"


@pytest.fixture(autouse=True)
def runtime_config(monkeypatch: pytest.MonkeyPatch):
    """Apply the canned configuration file for every test.

    Args:
      monkeypatch: Pytest helper injected automatically for environment control.
    """

    monkeypatch.setenv("SPAMSYNC_CONFIG_PATH", str(CONFIG_PATH))
    reset_runtime_config()
    try:
        yield
    finally:
        reset_runtime_config()


@pytest.fixture
def config_payload(tmp_path: Path) -> dict:
    """Return the canned configuration with ``stateDir`` redirected to ``tmp_path``."""

    payload = copy.deepcopy(json.loads(CONFIG_PATH.read_text(encoding="utf-8")))
    payload["stateDir"] = str(tmp_path / "state")
    return payload
