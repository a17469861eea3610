"""
Shared fixtures for the KumaScript test suite.
Path: tests/conftest.py
"""

import sys
from pathlib import Path

import pytest

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from kumascript.bridge import Bridge
from kumascript.context import ExecutionContext
from kumascript.loader import DictLoader
from kumascript.utils.logging import configure_logging

configure_logging(level="DEBUG")


@pytest.fixture
def bridge():
    """A private bridge per test, with a generous backstop deadline."""
    bridge = Bridge(timeout=10).start()
    yield bridge
    bridge.close()


@pytest.fixture
def loader():
    return DictLoader()


@pytest.fixture
def make_context(bridge, loader):
    """Factory for top-level contexts wired to the test bridge and loader."""
    def _make(**kwargs):
        kwargs.setdefault("loader", loader)
        kwargs.setdefault("bridge", bridge)
        return ExecutionContext(**kwargs)
    return _make
