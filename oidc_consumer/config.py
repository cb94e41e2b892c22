from __future__ import annotations

import os
import re
from enum import Enum
from typing import Any, Optional

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from oidc_consumer.logging import get_logger
from oidc_consumer.service.redirect_policy import parse_patterns

logger = get_logger(__name__)


class AuthorizationMethod(str, Enum):
    """Where client credentials travel on token endpoint calls."""

    HEADER = "header"  # HTTP Basic
    BODY = "body"  # client_id / client_secret form fields


class BodyFormat(str, Enum):
    FORM = "form"
    JSON = "json"


class CredentialsEncoding(str, Enum):
    """How client id/secret are encoded inside the Basic header.

    STRICT form-url-encodes both values before base64, as RFC 6749 §2.3.1
    requires; LOOSE sends them raw for providers that do not decode.
    """

    STRICT = "strict"
    LOOSE = "loose"


class SessionBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


DEFAULT_AUTHORIZE_PATH = "/oauth/authorize"
DEFAULT_TOKEN_PATH = "/oauth/token"
DEFAULT_REVOKE_PATH = "/oauth/revoke"


def _join_url(host: str, path: str) -> str:
    if not host:
        return path
    return host.rstrip("/") + "/" + path.lstrip("/")


class ClientConfig(BaseModel):
    """Identity-provider client credentials and endpoints."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = ""
    secret: str = ""
    id_param_name: str = "client_id"
    secret_param_name: str = "client_secret"
    authorize_host: str = ""
    authorize_path: str = DEFAULT_AUTHORIZE_PATH
    token_host: str = ""
    token_path: str = DEFAULT_TOKEN_PATH
    refresh_path: str = DEFAULT_TOKEN_PATH
    revoke_path: str = DEFAULT_REVOKE_PATH
    authorization_method: AuthorizationMethod = AuthorizationMethod.HEADER
    body_format: BodyFormat = BodyFormat.FORM
    credentials_encoding: CredentialsEncoding = CredentialsEncoding.STRICT
    scope_separator: str = " "
    timeout_seconds: float = Field(30.0, gt=0)

    @property
    def authorize_endpoint(self) -> str:
        # Providers commonly serve authorize and token from the same host
        return _join_url(self.authorize_host or self.token_host, self.authorize_path)

    @property
    def token_endpoint(self) -> str:
        return _join_url(self.token_host, self.token_path)

    @property
    def refresh_endpoint(self) -> str:
        return _join_url(self.token_host, self.refresh_path or self.token_path)

    @property
    def revoke_endpoint(self) -> str:
        return _join_url(self.token_host, self.revoke_path)


class FlowConfig(BaseModel):
    """Immutable authorization-flow configuration, built once at startup."""

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    scope: str = ""
    callback_route: Optional[str] = None
    callback_url: Optional[str] = None
    allowed_redirect_patterns: tuple[Any, ...] = ()
    session_retry_delay_ms: int = Field(500, ge=0)
    client: ClientConfig = Field(default_factory=ClientConfig)

    @field_validator("allowed_redirect_patterns", mode="before")
    @classmethod
    def _parse_patterns(cls, value: Any) -> tuple[Any, ...]:
        if value is None:
            return ()
        if isinstance(value, (str, bytes)):
            value = [value]
        try:
            return parse_patterns(value)
        except re.error as exc:
            raise ValueError(f"invalid redirect pattern regex: {exc}") from exc


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


_TRUTHY = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Runtime settings read from the environment (and ``.env``)."""

    # Flow
    scope: str = env_field("", "OIDC_SCOPE")
    callback_route: str | None = env_field(None, "OIDC_CALLBACK_ROUTE")
    callback_url: str | None = env_field(None, "OIDC_CALLBACK_URL")
    allowed_redirect_patterns: list[str] = env_field(
        [],
        "OIDC_ALLOWED_REDIRECT_PATTERNS",
        description="Comma separated globs; prefix an entry with 're:' for a regex",
    )
    session_retry_delay_ms: int = env_field(500, "OIDC_SESSION_RETRY_DELAY_MS", ge=0)
    route_prefix: str = env_field("/auth", "OIDC_ROUTE_PREFIX")
    # Identity provider client
    client_id: str = env_field("", "OIDC_CLIENT_ID")
    client_secret: str = env_field("", "OIDC_CLIENT_SECRET")
    client_id_param: str = env_field("client_id", "OIDC_CLIENT_ID_PARAM")
    client_secret_param: str = env_field("client_secret", "OIDC_CLIENT_SECRET_PARAM")
    authorize_host: str = env_field("", "OIDC_AUTHORIZE_HOST")
    authorize_path: str = env_field(DEFAULT_AUTHORIZE_PATH, "OIDC_AUTHORIZE_PATH")
    token_host: str = env_field("", "OIDC_TOKEN_HOST")
    token_path: str = env_field(DEFAULT_TOKEN_PATH, "OIDC_TOKEN_PATH")
    refresh_path: str = env_field(DEFAULT_TOKEN_PATH, "OIDC_REFRESH_PATH")
    revoke_path: str = env_field(DEFAULT_REVOKE_PATH, "OIDC_REVOKE_PATH")
    authorization_method: AuthorizationMethod = env_field(
        AuthorizationMethod.HEADER, "OIDC_AUTHORIZATION_METHOD"
    )
    body_format: BodyFormat = env_field(BodyFormat.FORM, "OIDC_BODY_FORMAT")
    credentials_encoding: CredentialsEncoding = env_field(
        CredentialsEncoding.STRICT, "OIDC_CREDENTIALS_ENCODING"
    )
    scope_separator: str = env_field(" ", "OIDC_SCOPE_SEPARATOR")
    http_timeout_seconds: float = env_field(30.0, "OIDC_HTTP_TIMEOUT_SECONDS", gt=0)
    # Session storage
    session_backend: SessionBackend = env_field(SessionBackend.MEMORY, "SESSION_BACKEND")
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    session_ttl_seconds: int = env_field(600, "SESSION_TTL_SECONDS", gt=0)
    session_cookie_name: str = env_field("oidc_session", "SESSION_COOKIE_NAME")
    session_cookie_secure: bool = env_field(True, "SESSION_COOKIE_SECURE")
    test_mode: bool = env_field(False, "TEST_MODE")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("allowed_redirect_patterns", mode="before")
    @classmethod
    def _split_patterns(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return list(value)

    @field_validator("session_cookie_secure", "test_mode", mode="before")
    @classmethod
    def _parse_bool(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() in _TRUTHY
        return value

    @field_validator("callback_route", "callback_url", mode="before")
    @classmethod
    def _blank_is_unset(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def client_config(self) -> ClientConfig:
        return ClientConfig(
            id=self.client_id,
            secret=self.client_secret,
            id_param_name=self.client_id_param,
            secret_param_name=self.client_secret_param,
            authorize_host=self.authorize_host,
            authorize_path=self.authorize_path,
            token_host=self.token_host,
            token_path=self.token_path,
            refresh_path=self.refresh_path,
            revoke_path=self.revoke_path,
            authorization_method=self.authorization_method,
            body_format=self.body_format,
            credentials_encoding=self.credentials_encoding,
            scope_separator=self.scope_separator,
            timeout_seconds=self.http_timeout_seconds,
        )

    def flow_config(self) -> FlowConfig:
        if not self.allowed_redirect_patterns:
            logger.warning(
                "redirect_allow_list_empty",
                message="No redirect patterns configured; every login destination will be rejected",
            )
        return FlowConfig(
            scope=self.scope,
            callback_route=self.callback_route,
            callback_url=self.callback_url,
            allowed_redirect_patterns=self.allowed_redirect_patterns,
            session_retry_delay_ms=self.session_retry_delay_ms,
            client=self.client_config(),
        )


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
