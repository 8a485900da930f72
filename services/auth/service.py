"""High-level authentication service: login, logout and session restore."""

from typing import Optional

from core.config.settings import Settings
from core.logging import get_logger
from .credential_store import CredentialStore
from .exceptions import (
    AuthenticationError,
    CredentialStorageError,
    InvalidCredentialsError,
    TransportError,
)
from .models import (
    AuthStatus,
    ClientProfile,
    LoginRequest,
    RequestDescriptor,
    TokenResponse,
)
from .pipeline import AuthenticatedPipeline

logger = get_logger(__name__, component="auth_service")


class AuthService:
    """Owns the client's authentication status on top of the pipeline."""

    def __init__(self, settings: Settings, store: CredentialStore, pipeline: AuthenticatedPipeline):
        self.settings = settings
        self.store = store
        self.pipeline = pipeline
        self._status = AuthStatus.UNAUTHENTICATED
        self._profile: Optional[ClientProfile] = None

    @property
    def status(self) -> AuthStatus:
        return self._status

    @property
    def profile(self) -> Optional[ClientProfile]:
        return self._profile

    def is_authenticated(self) -> bool:
        return self._status == AuthStatus.AUTHENTICATED

    def attach(self) -> None:
        """Listen for auth failures raised anywhere in the pipeline."""
        self.pipeline.coordinator.set_auth_failed_callback(self._handle_auth_failed)

    async def start(self) -> bool:
        """Register for auth failures and restore a stored session."""
        self.attach()
        restored = await self.validate_session()
        logger.info("AuthService started", status=self._status.value)
        return restored

    async def stop(self) -> None:
        self.pipeline.coordinator.clear_auth_failed_callback()
        await self.pipeline.coordinator.aclose()
        await self.pipeline.transport.aclose()
        await self.store.backend.aclose()
        logger.info("AuthService stopped")

    async def login(self, email: str, password: str) -> ClientProfile:
        """Exchange email/password for a credential pair and store it.

        Login goes straight to the transport: a 401 here means bad
        credentials, not an expired token, so it must not trigger renewal.
        """
        self._status = AuthStatus.AUTHENTICATING
        body = LoginRequest(email=email, password=password).model_dump()
        try:
            response = await self.pipeline.transport.send(
                RequestDescriptor(method="POST", path=self.settings.api.login_path, json=body)
            )
        except TransportError:
            self._status = AuthStatus.ERROR
            raise

        if response.status_code in (400, 401, 403, 422):
            self._status = AuthStatus.UNAUTHENTICATED
            raise InvalidCredentialsError(
                response.detail or "Login rejected",
                details={"status_code": response.status_code},
            )
        if not response.is_success:
            self._status = AuthStatus.ERROR
            response.raise_for_status()

        try:
            tokens = TokenResponse.model_validate(response.json())
        except ValueError as e:
            self._status = AuthStatus.ERROR
            raise AuthenticationError("Login endpoint returned a malformed body") from e

        try:
            await self.store.set(tokens.to_pair())
            profile = await self.get_profile()
        except Exception:
            # A failed renewal has already logged the client out
            if self._status == AuthStatus.AUTHENTICATING:
                self._status = AuthStatus.ERROR
            raise

        self._status = AuthStatus.AUTHENTICATED
        logger.info("Logged in", user_type=tokens.user_type)
        return profile

    async def logout(self) -> None:
        """Best-effort server logout, then always drop local credentials."""
        access_token = await self.store.get_access_token()
        try:
            if access_token:
                # Sent without renewal: an expired token is as good as logged out
                response = await self.pipeline.transport.send(
                    RequestDescriptor(method="POST", path=self.settings.api.logout_path).with_bearer(access_token)
                )
                if not response.is_success:
                    logger.info("Server logout rejected, clearing local state", status_code=response.status_code)
        except TransportError as e:
            logger.info("Logout request failed, clearing local state", error=e)
        finally:
            await self.store.clear_tokens()
            self._status = AuthStatus.UNAUTHENTICATED
            self._profile = None

    async def validate_session(self) -> bool:
        """Check that the stored access token still works.

        Any failure, including a failed renewal, leaves the client logged out
        with no stored tokens.
        """
        token = await self.store.get_access_token()
        if not token:
            logger.info("No stored access token")
            self._status = AuthStatus.UNAUTHENTICATED
            return False

        try:
            response = await self.pipeline.get(self.settings.api.me_path)
        except (AuthenticationError, TransportError) as e:
            logger.info("Stored session is not usable", error=e)
            response = None

        if response is not None and response.status_code == 200:
            try:
                profile = ClientProfile.model_validate(response.json())
            except ValueError as e:
                logger.warning("Profile endpoint returned a malformed body", error=e)
            else:
                self._profile = profile
                self._status = AuthStatus.AUTHENTICATED
                return True

        try:
            await self.store.clear_tokens()
        except CredentialStorageError as e:
            logger.error("Could not clear invalid session", error=e)
        self._status = AuthStatus.UNAUTHENTICATED
        self._profile = None
        return False

    async def get_profile(self) -> ClientProfile:
        response = await self.pipeline.get(self.settings.api.me_path)
        response.raise_for_status()
        self._profile = ClientProfile.model_validate(response.json())
        return self._profile

    def _handle_auth_failed(self, reason: Exception) -> None:
        logger.warning("Authentication lost, logging out", reason=type(reason).__name__)
        self._status = AuthStatus.UNAUTHENTICATED
        self._profile = None
