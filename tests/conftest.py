"""
Pytest configuration and shared fixtures for the Cosmos client tests.
"""

import httpx
import pytest
import pytest_asyncio

from core.config.settings import (
    APISettings,
    CredentialStoreSettings,
    LoggingSettings,
    RefreshSettings,
    Settings,
)
from core.logging import configure_logging
from services.auth.credential_store import CredentialStore, MemorySecretBackend
from services.auth.pipeline import AuthenticatedPipeline
from services.auth.refresh_coordinator import RefreshCoordinator
from services.auth.transport import HttpTransport
from tests.mocks.fake_cosmos_api import FakeCosmosApi


@pytest.fixture(scope="session", autouse=True)
def configure_test_logging():
    """Route structlog through stdlib logging once for the whole run."""
    configure_logging(Settings(environment="testing", logging=LoggingSettings(level="DEBUG")))


@pytest.fixture
def test_settings():
    """Test settings configuration."""
    return Settings(
        environment="testing",
        api=APISettings(base_url="https://api.cosmos.test/api/v1", timeout_seconds=5.0),
        credential_store=CredentialStoreSettings(backend="memory", namespace="cosmos-test"),
        refresh=RefreshSettings(timeout_seconds=2.0),
    )


@pytest.fixture
def fake_api():
    return FakeCosmosApi()


@pytest.fixture
def memory_backend(test_settings):
    return MemorySecretBackend(test_settings.credential_store.namespace)


@pytest.fixture
def store(memory_backend, test_settings):
    return CredentialStore(
        memory_backend,
        access_key=test_settings.credential_store.access_token_key,
        refresh_key=test_settings.credential_store.refresh_token_key,
    )


@pytest_asyncio.fixture
async def transport(test_settings, fake_api):
    http = HttpTransport(test_settings.api, transport=httpx.MockTransport(fake_api.handler))
    yield http
    await http.aclose()


@pytest.fixture
def coordinator(store, transport, test_settings):
    return RefreshCoordinator(
        store,
        transport,
        refresh_path=test_settings.api.refresh_path,
        timeout_seconds=test_settings.renewal_timeout_seconds,
    )


@pytest.fixture
def pipeline(store, transport, coordinator):
    return AuthenticatedPipeline(store, transport, coordinator)
