# Dependency injection container for the Cosmos client
from dependency_injector import containers, providers
import redis.asyncio as redis

from core.config.settings import Settings
from services.auth.credential_store import (
    CredentialStore,
    KeyringSecretBackend,
    MemorySecretBackend,
    RedisSecretBackend,
)
from services.auth.transport import HttpTransport
from services.auth.refresh_coordinator import RefreshCoordinator
from services.auth.pipeline import AuthenticatedPipeline
from services.auth.service import AuthService


class AppContainer(containers.DeclarativeContainer):
    """Application dependency injection container"""

    # Configuration
    settings = providers.Singleton(Settings)

    # Redis is only connected when the redis backend is selected
    redis_client = providers.Singleton(
        redis.from_url,
        settings.provided.credential_store.redis_url,
        decode_responses=True,
    )

    secret_backend = providers.Selector(
        settings.provided.credential_store.backend,
        redis=providers.Singleton(
            RedisSecretBackend,
            redis_client=redis_client,
            namespace=settings.provided.credential_store.namespace,
        ),
        keyring=providers.Singleton(
            KeyringSecretBackend,
            namespace=settings.provided.credential_store.namespace,
        ),
        memory=providers.Singleton(
            MemorySecretBackend,
            namespace=settings.provided.credential_store.namespace,
        ),
    )

    credential_store = providers.Singleton(
        CredentialStore,
        backend=secret_backend,
        access_key=settings.provided.credential_store.access_token_key,
        refresh_key=settings.provided.credential_store.refresh_token_key,
    )

    # Tests override this with an httpx.MockTransport
    http_transport_backend = providers.Object(None)

    transport = providers.Singleton(
        HttpTransport,
        settings=settings.provided.api,
        transport=http_transport_backend,
    )

    # One coordinator per process: single-flight holds only within it
    refresh_coordinator = providers.Singleton(
        RefreshCoordinator,
        store=credential_store,
        transport=transport,
        refresh_path=settings.provided.api.refresh_path,
        timeout_seconds=settings.provided.renewal_timeout_seconds,
    )

    pipeline = providers.Singleton(
        AuthenticatedPipeline,
        store=credential_store,
        transport=transport,
        coordinator=refresh_coordinator,
    )

    auth_service = providers.Singleton(
        AuthService,
        settings=settings,
        store=credential_store,
        pipeline=pipeline,
    )
