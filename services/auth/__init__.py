"""Authenticated request pipeline with single-flight credential renewal."""

from .service import AuthService
from .pipeline import AuthenticatedPipeline
from .refresh_coordinator import RefreshCoordinator
from .transport import HttpTransport
from .credential_store import (
    CredentialStore,
    SecretBackend,
    RedisSecretBackend,
    KeyringSecretBackend,
    MemorySecretBackend,
)
from .models import (
    ApiResponse,
    AuthStatus,
    ClientProfile,
    CredentialPair,
    LoginRequest,
    RefreshState,
    RequestAttempt,
    RequestDescriptor,
    TokenResponse,
)
from .exceptions import (
    AccountDeactivatedError,
    ApiError,
    AuthenticationError,
    CredentialStorageError,
    InvalidCredentialsError,
    RenewalFailedError,
    TransportError,
    UnauthorizedError,
)

__all__ = [
    "AuthService",
    "AuthenticatedPipeline",
    "RefreshCoordinator",
    "HttpTransport",
    "CredentialStore",
    "SecretBackend",
    "RedisSecretBackend",
    "KeyringSecretBackend",
    "MemorySecretBackend",
    "ApiResponse",
    "AuthStatus",
    "ClientProfile",
    "CredentialPair",
    "LoginRequest",
    "RefreshState",
    "RequestAttempt",
    "RequestDescriptor",
    "TokenResponse",
    "AccountDeactivatedError",
    "ApiError",
    "AuthenticationError",
    "CredentialStorageError",
    "InvalidCredentialsError",
    "RenewalFailedError",
    "TransportError",
    "UnauthorizedError",
]
