"""Durable, namespaced storage for the access/refresh credential pair."""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Dict, Iterable, Mapping, Optional

import keyring
import keyring.errors
import redis.asyncio as redis
from redis.exceptions import RedisError

from core.logging import get_logger
from .exceptions import CredentialStorageError
from .models import CredentialPair

logger = get_logger(__name__, component="credential_store")


class SecretSession(ABC):
    """Handle on a secret backend, valid only inside `backend.session()`."""

    @abstractmethod
    async def read(self, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        ...

    @abstractmethod
    async def write(self, values: Mapping[str, str]) -> None:
        ...

    @abstractmethod
    async def delete(self, keys: Iterable[str]) -> None:
        ...


class SecretBackend(ABC):
    """A durable key/value secret store scoped to one namespace."""

    def __init__(self, namespace: str):
        self.namespace = namespace

    @abstractmethod
    def session(self) -> AsyncContextManager[SecretSession]:
        """Scoped acquisition of the underlying resource.

        Must be used as `async with backend.session() as handle:` and must
        release the resource on every exit path. Library errors surface as
        CredentialStorageError.
        """

    async def aclose(self) -> None:
        return None


class RedisSecretBackend(SecretBackend):
    """Secrets in Redis under `<namespace>:<slot>`.

    Writes and deletes of several slots go through one MULTI/EXEC pipeline,
    so both credentials change together.
    """

    def __init__(self, redis_client: redis.Redis, namespace: str):
        super().__init__(namespace)
        self.redis_client = redis_client

    def _key(self, slot: str) -> str:
        return f"{self.namespace}:{slot}"

    @asynccontextmanager
    async def session(self) -> AsyncIterator[SecretSession]:
        try:
            async with self.redis_client.pipeline(transaction=True) as pipe:
                yield _RedisSession(pipe, self._key)
        except RedisError as e:
            logger.error("Redis secret backend failure", namespace=self.namespace, error=e)
            raise CredentialStorageError(
                f"Redis secret backend failure: {e}", details={"namespace": self.namespace}
            ) from e

    async def aclose(self) -> None:
        await self.redis_client.aclose()


class _RedisSession(SecretSession):
    def __init__(self, pipe, key_fn):
        self._pipe = pipe
        self._key = key_fn

    async def read(self, keys):
        keys = list(keys)
        for key in keys:
            self._pipe.get(self._key(key))
        values = await self._pipe.execute()
        return {
            key: (value.decode() if isinstance(value, bytes) else value)
            for key, value in zip(keys, values)
        }

    async def write(self, values):
        for key, value in values.items():
            self._pipe.set(self._key(key), value)
        await self._pipe.execute()

    async def delete(self, keys):
        self._pipe.delete(*[self._key(key) for key in keys])
        await self._pipe.execute()


class KeyringSecretBackend(SecretBackend):
    """Secrets in the OS keychain; the namespace is the keyring service name.

    keyring is blocking, so calls run in the default executor. The keychain
    has no multi-key transaction; a lock serialises multi-slot operations
    within the process instead.
    """

    def __init__(self, namespace: str):
        super().__init__(namespace)
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[SecretSession]:
        async with self._lock:
            try:
                yield _KeyringSession(self.namespace)
            except keyring.errors.KeyringError as e:
                logger.error("Keyring secret backend failure", namespace=self.namespace, error=e)
                raise CredentialStorageError(
                    f"Keyring secret backend failure: {e}", details={"namespace": self.namespace}
                ) from e


class _KeyringSession(SecretSession):
    def __init__(self, service: str):
        self._service = service

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def read(self, keys):
        return {key: await self._run(keyring.get_password, self._service, key) for key in keys}

    async def write(self, values):
        for key, value in values.items():
            await self._run(keyring.set_password, self._service, key, value)

    async def delete(self, keys):
        # Every slot is attempted; the first real failure is raised afterwards
        failure = None
        for key in keys:
            try:
                await self._run(keyring.delete_password, self._service, key)
            except keyring.errors.PasswordDeleteError:
                # Slot was already empty
                continue
            except keyring.errors.KeyringError as e:
                if failure is None:
                    failure = e
        if failure is not None:
            raise failure


class MemorySecretBackend(SecretBackend):
    """Process-local backend for tests and throwaway sessions."""

    def __init__(self, namespace: str = "cosmos"):
        super().__init__(namespace)
        self.data: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[SecretSession]:
        async with self._lock:
            yield _MemorySession(self.data)


class _MemorySession(SecretSession):
    def __init__(self, data: Dict[str, str]):
        self._data = data

    async def read(self, keys):
        return {key: self._data.get(key) for key in keys}

    async def write(self, values):
        self._data.update(values)

    async def delete(self, keys):
        for key in keys:
            self._data.pop(key, None)


class CredentialStore:
    """Get/set/clear the credential pair held in a secret backend."""

    def __init__(
        self,
        backend: SecretBackend,
        access_key: str = "cosmos_access_token",
        refresh_key: str = "cosmos_refresh_token",
    ):
        if access_key == refresh_key:
            raise ValueError("access and refresh slots must use different keys")
        self.backend = backend
        self.access_key = access_key
        self.refresh_key = refresh_key

    async def get(self) -> Optional[CredentialPair]:
        """Return the stored pair, or None when either slot is empty."""
        async with self.backend.session() as handle:
            values = await handle.read([self.access_key, self.refresh_key])
        access_token = values.get(self.access_key)
        refresh_token = values.get(self.refresh_key)
        if not access_token or not refresh_token:
            return None
        return CredentialPair(access_token=access_token, refresh_token=refresh_token)

    async def set(self, pair: CredentialPair) -> None:
        async with self.backend.session() as handle:
            await handle.write({
                self.access_key: pair.access_token,
                self.refresh_key: pair.refresh_token,
            })
        logger.debug("Stored credential pair", namespace=self.backend.namespace)

    async def clear(self) -> None:
        async with self.backend.session() as handle:
            await handle.delete([self.access_key, self.refresh_key])
        logger.info("Cleared stored credentials", namespace=self.backend.namespace)

    async def get_access_token(self) -> Optional[str]:
        return await self._read_one(self.access_key)

    async def get_refresh_token(self) -> Optional[str]:
        return await self._read_one(self.refresh_key)

    async def set_tokens(self, access_token: str, refresh_token: str) -> None:
        await self.set(CredentialPair(access_token=access_token, refresh_token=refresh_token))

    async def clear_tokens(self) -> None:
        await self.clear()

    async def _read_one(self, key: str) -> Optional[str]:
        async with self.backend.session() as handle:
            values = await handle.read([key])
        return values.get(key) or None
