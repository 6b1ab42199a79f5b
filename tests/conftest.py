"""pytest configuration for localai tests."""

from __future__ import annotations

import pytest

from localai.models import Endpoint


# Configure asyncio mode for pytest-asyncio
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


@pytest.fixture
def endpoint() -> Endpoint:
    return Endpoint("Local AI", "192.168.1.20", 8000)
