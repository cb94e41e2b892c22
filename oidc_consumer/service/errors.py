from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP ``status_code`` and a stable
    ``error_code`` rendered into the error envelope:
    - validation_error (400)
    - forbidden (403)
    - conflict (409)
    - server_error (500)
    - upstream_error (502)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


class ProviderError(ServiceError):
    """Identity provider answered with something that is not a token (502)."""
    status_code = 502
    error_code = "upstream_error"


class AuthorizationDeniedError(ServiceError):
    """Identity provider redirected back with an OAuth error instead of a code (401)."""
    status_code = 401
    error_code = "authorization_denied"


class FlowError(ServiceError):
    """Authorization-code flow rejection delivered through ``next(error)``.

    The ``error_code`` is the flow error kind, e.g. ``SECRET_MISMATCH``.
    """

    kind: str = "FLOW_ERROR"
    default_message: str = "authorization flow failed"

    def __init__(self, message: Optional[str] = None, **kwargs) -> None:
        kwargs.setdefault("error_code", self.kind)
        super().__init__(message or self.default_message, **kwargs)


class MissingDestinationError(FlowError):
    """No post-login destination on initiate, or none stored on callback (400)."""
    kind = "MISSING_DESTINATION"
    status_code = 400
    default_message = "Missing destination"


class DisallowedRedirectError(FlowError):
    """Destination rejected by the redirect allow-list (403)."""
    kind = "DISALLOWED_REDIRECT_URI"
    status_code = 403
    default_message = "Redirects are not permitted to provided URL"


class SecretMismatchError(FlowError):
    """Returned state does not match the session nonce (409)."""
    kind = "SECRET_MISMATCH"
    status_code = 409
    default_message = "Secret Mismatch"


class SessionLoadFailedError(FlowError):
    """Session state still missing after the bounded reload (424)."""
    kind = "SESSION_LOAD_FAILED"
    status_code = 424
    default_message = "Unable to locate session"


class SessionDestroyError(FlowError):
    """Session could not be destroyed after state verification (500)."""
    kind = "FAILURE_DESTROYING_SESSION"
    status_code = 500
    default_message = "Couldn't destroy session"


__all__ = [
    "ServiceError",
    "ValidationError",
    "ServerError",
    "ProviderError",
    "AuthorizationDeniedError",
    "FlowError",
    "MissingDestinationError",
    "DisallowedRedirectError",
    "SecretMismatchError",
    "SessionLoadFailedError",
    "SessionDestroyError",
]
