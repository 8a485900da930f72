"""HTTP transport: sends fully formed requests, nothing else."""

from typing import Optional

import httpx

from core.config.settings import APISettings
from core.logging import get_logger
from .exceptions import TransportError
from .models import ApiResponse, RequestDescriptor

logger = get_logger(__name__, component="transport")


class HttpTransport:
    """Thin async wrapper around an httpx client.

    Returns every HTTP response (including 401 and 5xx) as an ApiResponse;
    only network-level failures raise, as TransportError.
    """

    def __init__(
        self,
        settings: APISettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=settings.timeout_seconds,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def send(self, descriptor: RequestDescriptor) -> ApiResponse:
        request = self._client.build_request(
            descriptor.method.upper(),
            descriptor.path,
            params=descriptor.params,
            json=descriptor.json,
            headers=dict(descriptor.headers),
            timeout=descriptor.timeout if descriptor.timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )
        try:
            response = await self._client.send(request)
        except httpx.TransportError as e:
            logger.warning(
                "Transport failure",
                method=request.method,
                url=str(request.url),
                error_type=type(e).__name__,
                error=str(e) or type(e).__name__,
            )
            raise TransportError(
                f"{request.method} {request.url} failed: {type(e).__name__}: {e}",
                method=request.method,
                url=str(request.url),
            ) from e

        logger.debug(
            "HTTP response",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )
        return ApiResponse(raw=response)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
