"""Test package marker.

Making `tests/` a package gives test modules fully-qualified names, so shared
helpers import as `tests.helpers`.
"""
