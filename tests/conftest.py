"""
Pytest configuration and shared fixtures for the test suite.
"""
import os
import sys
from datetime import datetime
from pathlib import Path

import pytest

# Add project root to Python path so tests.fixtures is importable
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from captcha_relay.captcha.credentials import (  # noqa: E402
    NOPECHA_API_KEY,
    OPENROUTER_API_KEY,
    InMemoryCredentialStore,
)
from captcha_relay.imaging.normalizer import CropRegion  # noqa: E402
from tests.fixtures.image_fixtures import make_capture  # noqa: E402


class FakeClock:
    """Manually advanced clock for cooldown tests."""
    
    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, 0)):
        self.now = start
    
    def __call__(self) -> datetime:
        return self.now
    
    def advance(self, delta) -> None:
        self.now = self.now + delta


@pytest.fixture
def clock():
    """Controllable clock starting at a fixed instant."""
    return FakeClock()


@pytest.fixture
def credentials():
    """Credential store with keys for every provider."""
    return InMemoryCredentialStore({
        OPENROUTER_API_KEY: "or-test-key",
        NOPECHA_API_KEY: "np-test-key",
    })


@pytest.fixture
def capture_bytes():
    """PNG screenshot with a red captcha rectangle covering (10, 20, 100x40)."""
    return make_capture()


@pytest.fixture
def region():
    """Crop region matching the captcha rectangle of ``capture_bytes``."""
    return CropRegion(x=10, y=20, width=100, height=40)


@pytest.fixture
def clean_env(monkeypatch):
    """Isolated environment without captcha-related variables.
    
    Values loaded from .env files by the code under test land in the copy and
    disappear after the test.
    """
    environ = {
        key: value for key, value in os.environ.items()
        if not key.startswith("CAPTCHA_") and key not in ("OPENROUTER_API_KEY", "NOPECHA_API_KEY")
    }
    monkeypatch.setattr(os, "environ", environ)
    return monkeypatch


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
