"""Data model for the authenticated request pipeline."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ApiError

AUTHORIZATION_HEADER = "Authorization"


class AuthStatus(Enum):
    """Authentication status enumeration."""
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    ERROR = "error"


class RefreshState(str, Enum):
    """Renewal state of a RefreshCoordinator."""
    IDLE = "idle"
    REFRESHING = "refreshing"


@dataclass(frozen=True)
class CredentialPair:
    """Access + renewal credential, as issued by login or renewal."""
    access_token: str
    refresh_token: str

    def __repr__(self) -> str:
        # Never leak secrets into reprs/tracebacks
        return "CredentialPair(access_token='***', refresh_token='***')"


@dataclass(frozen=True)
class RequestDescriptor:
    """Immutable description of one outgoing API call."""
    method: str
    path: str
    params: Optional[Mapping[str, Any]] = None
    json: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None

    def with_bearer(self, access_token: str) -> "RequestDescriptor":
        """Return a copy carrying `Authorization: Bearer <token>`."""
        headers = {k: v for k, v in self.headers.items() if k.lower() != "authorization"}
        headers[AUTHORIZATION_HEADER] = f"Bearer {access_token}"
        return replace(self, headers=headers)

    def without_authorization(self) -> "RequestDescriptor":
        headers = {k: v for k, v in self.headers.items() if k.lower() != "authorization"}
        return replace(self, headers=headers)

    @property
    def label(self) -> str:
        return f"{self.method.upper()} {self.path}"


@dataclass(frozen=True)
class RequestAttempt:
    """Per-attempt context for one logical request.

    A replay is a new value with retried=True; the original is never mutated.
    """
    request: RequestDescriptor
    retried: bool = False

    def as_retry(self, access_token: str) -> "RequestAttempt":
        if self.retried:
            raise ValueError("request has already been replayed once")
        return RequestAttempt(request=self.request.with_bearer(access_token), retried=True)


@dataclass(frozen=True)
class ApiResponse:
    """HTTP response as seen by pipeline callers."""
    raw: httpx.Response

    @property
    def status_code(self) -> int:
        return self.raw.status_code

    @property
    def is_unauthorized(self) -> bool:
        return self.raw.status_code == 401

    @property
    def is_forbidden(self) -> bool:
        return self.raw.status_code == 403

    @property
    def is_success(self) -> bool:
        return self.raw.is_success

    @property
    def headers(self) -> httpx.Headers:
        return self.raw.headers

    @property
    def text(self) -> str:
        return self.raw.text

    def json(self) -> Any:
        return self.raw.json()

    @property
    def detail(self) -> Optional[str]:
        """`detail` field of a JSON error body, if there is one."""
        try:
            body = self.raw.json()
        except ValueError:
            return None
        if isinstance(body, dict) and isinstance(body.get("detail"), str):
            return body["detail"]
        return None

    def raise_for_status(self) -> "ApiResponse":
        if not self.is_success:
            raise ApiError(
                f"{self.raw.request.method} {self.raw.request.url.path} "
                f"failed with status {self.status_code}",
                status_code=self.status_code,
                response=self,
                details={"detail": self.detail} if self.detail else None,
            )
        return self


class TokenResponse(BaseModel):
    """Body returned by the login and renewal endpoints."""
    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1)
    token_type: Optional[str] = None
    user_type: Optional[str] = None

    def to_pair(self) -> CredentialPair:
        return CredentialPair(access_token=self.access_token, refresh_token=self.refresh_token)


class RenewalRequest(BaseModel):
    refresh_token: str


class LoginRequest(BaseModel):
    email: str
    password: str


class ClientProfile(BaseModel):
    """Subset of the client profile the auth layer relies on."""
    model_config = ConfigDict(extra="allow")

    id: str
    email: str
    client_id: Optional[str] = None
    tenant_id: Optional[str] = None
    client_name: Optional[str] = None
    is_active: bool = True
    mfa_enabled: bool = False
    last_login_at: Optional[str] = None
    tenant_name: Optional[str] = None
    risk_profile: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "client_name": self.client_name,
            "tenant": self.tenant_name or self.tenant_id,
        }
