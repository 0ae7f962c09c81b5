"""Root conftest.py for test configuration.

Ensures local src/ directory takes priority over any installed packages,
and makes the shared test doubles in tests/fakes.py importable.
"""

import sys
from pathlib import Path

import pytest

# Insert local src directory at the beginning of sys.path
# This ensures that the local pikelens package is used, not any installed one
_tests_dir = Path(__file__).parent
_src_dir = _tests_dir.parent / "src"
for _path in (_src_dir, _tests_dir):
    if str(_path) not in sys.path:
        sys.path.insert(0, str(_path))

# Force reimport of pikelens modules if already imported
for module_name in list(sys.modules.keys()):
    if module_name.startswith("pikelens"):
        del sys.modules[module_name]

from fakes import FakeBridge  # noqa: E402


@pytest.fixture
def fake_bridge() -> FakeBridge:
    """An in-process bridge with no worker behind it."""
    return FakeBridge()
