import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

from tests.fakes import InMemoryStore  # noqa: E402


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def no_sleep():
    return lambda seconds: None


@pytest.fixture
def fake_session():
    """BrowserSession double: a MagicMock driver and a new_tab() context manager."""
    session = MagicMock()
    session.browser_name = 'chrome'
    session.warning = None
    driver = MagicMock()
    session.driver = driver
    session.new_tab.return_value.__enter__.return_value = driver
    session.new_tab.return_value.__exit__.return_value = False
    return session
