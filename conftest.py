"""
Pytest configuration for the PEMU test suite.

    python -m pytest                    # everything
    python -m pytest -m "not display"   # skip the pygame window tests

Tests marked ``display`` need pygame and numpy; they are skipped when
either is missing.  SDL is pointed at its dummy video driver so no real
window is opened.
"""

import importlib.util
import os

import pytest


def pytest_configure(config):
    """Register markers and keep SDL off the real screen."""
    config.addinivalue_line("markers",
        "display: tests that need pygame and numpy (skipped when missing)")
    os.environ.setdefault("SDL_VIDEODRIVER", "dummy")


def pytest_collection_modifyitems(config, items):
    missing = [m for m in ("pygame", "numpy")
               if importlib.util.find_spec(m) is None]
    if not missing:
        return
    skip = pytest.mark.skip(reason=f"not installed: {', '.join(missing)}")
    for item in items:
        if "display" in item.keywords:
            item.add_marker(skip)
