"""Test package marker.

What:
  Marks ``tests`` as a package so pytest resolves ``tests.unit`` modules and the
  CLI wiring tests without name clashes.

Invariants & Safety:
  - Importing ``tests`` has no side effects; fixtures live in ``conftest.py``.
"""
