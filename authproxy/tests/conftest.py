"""
Shared fixtures for the proxy test suite.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from authproxy.config import get_settings
from authproxy.main import create_app
from authproxy.tests.helpers import TEST_SECRET, RecordingUpstream, make_settings


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def upstream():
    return RecordingUpstream()


@pytest.fixture
def app(settings, upstream):
    """Proxy application wired to the recording upstream"""
    return create_app(settings, transport=httpx.MockTransport(upstream))


@pytest.fixture
def client(app):
    """Test client with the lifespan running (upstream client created)"""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    """Headers carrying the correct shared secret"""
    return {"Authorization": TEST_SECRET}
