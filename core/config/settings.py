# Complete settings for the Cosmos client
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator
from enum import Enum
from typing import Literal


class Environment(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


class APISettings(BaseModel):
    base_url: str = "http://127.0.0.1:8000/api/v1"
    timeout_seconds: float = 30.0
    refresh_path: str = "/client/auth/refresh"
    login_path: str = "/client/auth/login"
    logout_path: str = "/client/auth/logout"
    me_path: str = "/client/auth/me"

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout_seconds must be positive")
        return v


class CredentialStoreSettings(BaseModel):
    # redis for shared/durable deployments, keyring for desktop installs
    backend: Literal["redis", "keyring", "memory"] = "keyring"
    namespace: str = "cosmos"
    access_token_key: str = "cosmos_access_token"
    refresh_token_key: str = "cosmos_refresh_token"
    redis_url: str = "redis://localhost:6379/0"

    @field_validator("refresh_token_key")
    @classmethod
    def validate_distinct_slots(cls, v, info):
        if v == info.data.get("access_token_key"):
            raise ValueError("access and refresh slots must use different keys")
        return v


class RefreshSettings(BaseModel):
    """Credential renewal behaviour"""
    # None means: use the API timeout
    timeout_seconds: float | None = None


class LoggingSettings(BaseModel):
    level: str = "INFO"
    console_json_format: bool = False
    redact_keys: list[str] = [
        "authorization", "access_token", "refresh_token", "password",
        "secret", "token", "set-cookie", "cookie",
    ]


class Settings(BaseSettings):
    """Main application settings, loaded from environment variables"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore"
    )

    app_name: str = "Cosmos Client"
    version: str = "1.0.0"
    environment: Environment = Environment.DEVELOPMENT

    api: APISettings = APISettings()
    credential_store: CredentialStoreSettings = CredentialStoreSettings()
    refresh: RefreshSettings = RefreshSettings()
    logging: LoggingSettings = LoggingSettings()

    @property
    def renewal_timeout_seconds(self) -> float:
        """Effective timeout for a renewal call.

        Renewal runs under the same timeout discipline as ordinary requests
        unless REFRESH__TIMEOUT_SECONDS overrides it.
        """
        if self.refresh.timeout_seconds is not None:
            return self.refresh.timeout_seconds
        return self.api.timeout_seconds


# No global settings instance - use dependency injection instead
