from __future__ import annotations

from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from oidc_consumer.logging import get_correlation_id
from oidc_consumer.storage.models import TokenKind, TokenRecord

_VALID_ERROR_CODES = frozenset({
    "validation_error",
    "unauthorized",
    "authorization_denied",
    "forbidden",
    "not_found",
    "server_error",
    "upstream_error",
    # Authorization flow kinds
    "MISSING_DESTINATION",
    "DISALLOWED_REDIRECT_URI",
    "SECRET_MISMATCH",
    "SESSION_LOAD_FAILED",
    "FAILURE_DESTROYING_SESSION",
})


def _request_id() -> str:
    return get_correlation_id() or str(uuid4())


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {sorted(_VALID_ERROR_CODES)}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=_request_id)


class TokenPayload(BaseModel):
    access_token: str = Field(..., max_length=8192)
    refresh_token: Optional[str] = Field(default=None, max_length=8192)
    token_type: str = Field(default="Bearer", max_length=64)
    expires_at: Optional[float] = None
    scope: Optional[str] = Field(default=None, max_length=2048)
    id_token: Optional[str] = Field(default=None, max_length=16384)

    def to_record(self) -> TokenRecord:
        return TokenRecord(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            token_type=self.token_type,
            expires_at=self.expires_at,
            scope=self.scope,
            id_token=self.id_token,
        )

    @classmethod
    def from_record(cls, token: TokenRecord) -> "TokenPayload":
        return cls(**token.to_dict())


class TokenRefreshRequest(BaseModel):
    token: TokenPayload
    scope: Optional[str] = Field(default=None, max_length=2048)


class TokenRevokeRequest(BaseModel):
    token: TokenPayload
    kind: TokenKind = TokenKind.ALL
