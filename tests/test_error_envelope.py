"""Tests for the stable error envelope and the flow error hierarchy.

Error responses look like:
{
    "status": "error",
    "error": {"code": "<stable_code>", "message": "...", "details": <object|array|null>},
    "request_id": "<id>"
}
"""

import pytest
from pydantic import ValidationError

from oidc_consumer.api.error_handling import (
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
)
from oidc_consumer.api.schemas import Envelope, ErrorBody
from oidc_consumer.logging import set_correlation_id
from oidc_consumer.service.errors import (
    DisallowedRedirectError,
    FlowError,
    MissingDestinationError,
    SecretMismatchError,
    ServiceError,
    SessionDestroyError,
    SessionLoadFailedError,
)


class TestErrorBody:
    def test_required_fields(self):
        error = ErrorBody(code="SECRET_MISMATCH", message="Secret Mismatch")
        assert error.details is None

    def test_missing_message_raises(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="server_error")

    def test_unknown_code_rejected(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="teapot", message="short and stout")

    @pytest.mark.parametrize(
        "code",
        [
            "MISSING_DESTINATION",
            "DISALLOWED_REDIRECT_URI",
            "SECRET_MISMATCH",
            "SESSION_LOAD_FAILED",
            "FAILURE_DESTROYING_SESSION",
            "upstream_error",
        ],
    )
    def test_flow_kinds_are_valid_codes(self, code):
        assert ErrorBody(code=code, message="m").code == code


class TestEnvelope:
    def test_status_must_be_ok_or_error(self):
        with pytest.raises(ValidationError):
            Envelope(status="maybe")

    def test_request_id_follows_correlation_id(self):
        set_correlation_id("corr-1")
        assert Envelope(status="ok").request_id == "corr-1"


class TestErrorResponse:
    def test_status_mapping(self):
        assert _STATUS_TO_CODE[502] == "upstream_error"
        assert _error_code_for_status(418) == "server_error"

    def test_renders_envelope(self):
        response = _error_response(409, "Secret Mismatch", code="SECRET_MISMATCH")
        assert response.status_code == 409
        assert b'"code":"SECRET_MISMATCH"' in response.body
        assert b'"status":"error"' in response.body


class TestFlowErrors:
    @pytest.mark.parametrize(
        "exc_type, kind, status",
        [
            (MissingDestinationError, "MISSING_DESTINATION", 400),
            (DisallowedRedirectError, "DISALLOWED_REDIRECT_URI", 403),
            (SecretMismatchError, "SECRET_MISMATCH", 409),
            (SessionLoadFailedError, "SESSION_LOAD_FAILED", 424),
            (SessionDestroyError, "FAILURE_DESTROYING_SESSION", 500),
        ],
    )
    def test_kind_and_status(self, exc_type, kind, status):
        exc = exc_type()
        assert isinstance(exc, FlowError)
        assert isinstance(exc, ServiceError)
        assert exc.kind == kind
        assert exc.error_code == kind
        assert exc.status_code == status
        assert exc.message == exc_type.default_message

    def test_custom_message_and_detail(self):
        exc = DisallowedRedirectError("nope", detail={"destination": "https://evil.example.com/"})
        assert str(exc) == "nope"
        assert exc.detail == {"destination": "https://evil.example.com/"}
        assert exc.error_code == "DISALLOWED_REDIRECT_URI"
