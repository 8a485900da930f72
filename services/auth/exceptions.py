"""Authentication and transport exceptions for the Cosmos client."""

from typing import TYPE_CHECKING, Optional

from core.utils.exceptions import PermanentError, TransientError

if TYPE_CHECKING:
    from .models import ApiResponse


class AuthenticationError(PermanentError):
    """Base authentication error."""
    pass


class UnauthorizedError(AuthenticationError):
    """Request was rejected with 401 even after a credential renewal."""

    def __init__(self, message: str, response: Optional["ApiResponse"] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.response = response


class RenewalFailedError(AuthenticationError):
    """Credential renewal failed; stored credentials have been cleared.

    Callers are expected to route the user back to login.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code


class AccountDeactivatedError(AuthenticationError):
    """Backend reported the account as deactivated (403)."""

    def __init__(self, message: str, response: Optional["ApiResponse"] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.response = response


class InvalidCredentialsError(AuthenticationError):
    """Login was rejected by the backend."""
    pass


class CredentialStorageError(TransientError):
    """The secret backend could not be read or written."""
    pass


class TransportError(TransientError):
    """Network-level failure: timeout, connection reset, DNS, ..."""

    def __init__(self, message: str, method: Optional[str] = None,
                 url: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.method = method
        self.url = url


class ApiError(PermanentError):
    """Non-2xx response surfaced via ApiResponse.raise_for_status()."""

    def __init__(self, message: str, status_code: int, response: Optional["ApiResponse"] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.response = response
