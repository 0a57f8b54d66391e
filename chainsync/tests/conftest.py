"""
Pytest configuration for chainsync tests.
"""

import pytest

from chainsync.tests.fakes import FakeChainGateway, InMemoryStorage, make_settings

# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


def pytest_configure(config):
    """Configure pytest with asyncio marker."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an async test."
    )


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def gateway():
    return FakeChainGateway(height=5000)


@pytest.fixture
def storage():
    """Connected in-memory storage"""
    storage = InMemoryStorage()
    storage.connected = True
    return storage
