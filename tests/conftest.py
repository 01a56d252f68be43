# SPDX-License-Identifier: LGPL-3.0-or-later
import logging
import os
import sys
from pathlib import Path

import pytest

_THIS_DIR = Path(__file__).resolve().parent
_REPO_ROOT = _THIS_DIR.parent

if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

os.environ.setdefault("PYTHONPATH", str(_REPO_ROOT))


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: fast tests with no cluster or vCenter")
    config.addinivalue_line("markers", "security: secret handling and data-safety gates")


@pytest.fixture
def logger():
    log = logging.getLogger("vcmigrate.tests")
    log.setLevel(logging.DEBUG)
    return log
