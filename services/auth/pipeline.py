"""
Authenticated request pipeline.

Every business call site goes through `AuthenticatedPipeline.send`. Credential
handling is invisible to callers: the stored access token is attached, a 401
triggers one shared renewal, and the request is replayed at most once.
"""

from typing import Any, Mapping, Optional

from core.logging import correlation_scope, get_logger
from .credential_store import CredentialStore
from .exceptions import AccountDeactivatedError, UnauthorizedError
from .models import ApiResponse, RequestAttempt, RequestDescriptor
from .refresh_coordinator import RefreshCoordinator
from .transport import HttpTransport

logger = get_logger(__name__, component="pipeline")

DEACTIVATED_MARKER = "deactivated"


class AuthenticatedPipeline:
    """Wraps HttpTransport with bearer credentials and 401 recovery."""

    def __init__(
        self,
        store: CredentialStore,
        transport: HttpTransport,
        coordinator: RefreshCoordinator,
    ):
        self.store = store
        self.transport = transport
        self.coordinator = coordinator

    async def send(self, descriptor: RequestDescriptor) -> ApiResponse:
        """Send a request with credential handling.

        Returns the response for anything but 401 (errors included). Raises
        RenewalFailedError when the credential cannot be renewed,
        UnauthorizedError when the replayed request is rejected again,
        AccountDeactivatedError on a 403 for a deactivated account, and
        TransportError on network failures.
        """
        with correlation_scope(descriptor.label) as correlation_id:
            access_token = await self.store.get_access_token()
            if access_token:
                request = descriptor.with_bearer(access_token)
            else:
                request = descriptor.without_authorization()
            return await self._dispatch(RequestAttempt(request=request), correlation_id)

    async def _dispatch(self, attempt: RequestAttempt, correlation_id: str) -> ApiResponse:
        response = await self.transport.send(attempt.request)

        if response.is_forbidden:
            await self._check_deactivated(response, correlation_id)

        if not response.is_unauthorized:
            return response

        if attempt.retried:
            logger.warning("Request unauthorized after credential renewal", request=attempt.request.label)
            raise UnauthorizedError(
                f"{attempt.request.label} was rejected after credential renewal",
                response=response,
                correlation_id=correlation_id,
            )

        logger.info("Access credential rejected, requesting renewal", request=attempt.request.label)
        # RenewalFailedError propagates to the caller in place of the 401
        pair = await self.coordinator.acquire()
        return await self._dispatch(attempt.as_retry(pair.access_token), correlation_id)

    async def _check_deactivated(self, response: ApiResponse, correlation_id: str) -> None:
        detail = response.detail
        if not detail or DEACTIVATED_MARKER not in detail.lower():
            return
        logger.warning("Account deactivated, clearing credentials")
        await self.store.clear()
        error = AccountDeactivatedError(
            detail, response=response, correlation_id=correlation_id
        )
        await self.coordinator.notify_auth_failed(error)
        raise error

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> ApiResponse:
        return await self.send(
            RequestDescriptor(
                method=method,
                path=path,
                params=params,
                json=json,
                headers=dict(headers or {}),
                timeout=timeout,
            )
        )

    async def get(self, path: str, **kwargs) -> ApiResponse:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs) -> ApiResponse:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs) -> ApiResponse:
        return await self.request("PUT", path, **kwargs)

    async def patch(self, path: str, **kwargs) -> ApiResponse:
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs) -> ApiResponse:
        return await self.request("DELETE", path, **kwargs)
