from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from fastapi import APIRouter, Request, Response
from fastapi.responses import RedirectResponse

from oidc_consumer.api.schemas import (
    Envelope,
    TokenPayload,
    TokenRefreshRequest,
    TokenRevokeRequest,
)
from oidc_consumer.config import get_settings
from oidc_consumer.logging import get_logger
from oidc_consumer.service.flow import FlowRequest, FlowResponse
from oidc_consumer.service.runtime import Runtime, get_runtime
from oidc_consumer.storage.models import SessionRecord, TokenRecord

logger = get_logger(__name__)

AuthenticatedHandler = Callable[
    [Request, TokenRecord, str], Union[Awaitable[Response], Response]
]


class _NextCapture:
    """``next`` callable handed to the flow controller by the routes."""

    def __init__(self) -> None:
        self.called = False
        self.error: Optional[BaseException] = None

    def __call__(self, error: Optional[BaseException] = None) -> None:
        self.called = True
        self.error = error


async def _load_session(
    runtime: Runtime, request: Request, *, keep_unknown_id: bool = False
) -> SessionRecord:
    """Resolve the session named by the cookie.

    An id the store does not know is only kept when ``keep_unknown_id`` is
    set, so the callback can still reload a write that has not replicated
    yet. Login always starts from an id the store issued itself.
    """
    session_id = request.cookies.get(runtime.settings.session_cookie_name)
    if session_id:
        record = await runtime.store.load(session_id)
        if record is not None:
            return record
        if keep_unknown_id:
            return SessionRecord(id=session_id)
        logger.info("unknown_session_cookie_replaced")
    return SessionRecord.new()


def _flow_request(request: Request, session: SessionRecord, base_path: str) -> FlowRequest:
    host = request.headers.get("host") or request.url.netloc
    return FlowRequest(
        query=dict(request.query_params),
        host=host,
        session=session,
        base_path=base_path,
    )


def _apply_session_cookie(response: Response, runtime: Runtime, session: SessionRecord) -> None:
    response.set_cookie(
        runtime.settings.session_cookie_name,
        session.id,
        httponly=True,
        secure=runtime.settings.session_cookie_secure,
        samesite="lax",
        max_age=runtime.settings.session_ttl_seconds,
        path="/",
    )


def build_router(
    runtime: Optional[Runtime] = None,
    *,
    on_authenticated: Optional[AuthenticatedHandler] = None,
    authorize_params: Optional[Mapping[str, Any]] = None,
    token_params: Optional[Mapping[str, Any]] = None,
) -> APIRouter:
    """Mount the login/callback flow and the token endpoints.

    ``runtime`` defaults to the process singleton, resolved per request so
    test resets are picked up. ``on_authenticated`` replaces the default
    completion handler, which redirects to the stored destination.
    """
    prefix = (runtime.settings if runtime is not None else get_settings()).route_prefix
    prefix = "/" + prefix.strip("/") if prefix.strip("/") else ""
    router = APIRouter(prefix=prefix, tags=["auth"])

    def _runtime() -> Runtime:
        return runtime if runtime is not None else get_runtime()

    @router.get("/login")
    async def login(request: Request):
        """Start the authorization-code flow for ``?redirectUri=<destination>``."""
        rt = _runtime()
        session = await _load_session(rt, request)
        flow_response = FlowResponse()
        next_capture = _NextCapture()
        await rt.flow.initiate(
            _flow_request(request, session, prefix),
            flow_response,
            next_capture,
            extra_params=authorize_params,
        )
        if next_capture.error is not None:
            raise next_capture.error
        if flow_response.redirect_url is None:
            logger.error("login_without_redirect", session_id=session.id)
            return Response(status_code=500)
        redirect = RedirectResponse(flow_response.redirect_url, status_code=flow_response.status_code)
        _apply_session_cookie(redirect, rt, session)
        return redirect

    @router.get("/callback")
    async def callback(request: Request):
        """Complete the flow with the provider's ``code`` and ``state``."""
        rt = _runtime()
        session = await _load_session(rt, request, keep_unknown_id=True)
        flow_response = FlowResponse()
        next_capture = _NextCapture()
        await rt.flow.callback(
            _flow_request(request, session, prefix),
            flow_response,
            next_capture,
            extra_params=token_params,
        )
        if next_capture.error is not None:
            raise next_capture.error
        if not next_capture.called:
            logger.warning("callback_not_completed", session_id=session.id)
            return Response(status_code=204)

        token: TokenRecord = flow_response.locals["token"]
        destination: str = flow_response.locals["destination"]
        if on_authenticated is not None:
            result = on_authenticated(request, token, destination)
            if inspect.isawaitable(result):
                result = await result
            if isinstance(result, Response):
                result.delete_cookie(rt.settings.session_cookie_name, path="/")
            return result

        redirect = RedirectResponse(destination, status_code=302)
        redirect.delete_cookie(rt.settings.session_cookie_name, path="/")
        return redirect

    @router.post("/refresh", response_model=Envelope)
    async def refresh(body: TokenRefreshRequest):
        rt = _runtime()
        refreshed = await rt.tokens.refresh(body.token.to_record(), scope=body.scope)
        return Envelope(status="ok", data=TokenPayload.from_record(refreshed))

    @router.post("/revoke", response_model=Envelope)
    async def revoke(body: TokenRevokeRequest):
        rt = _runtime()
        await rt.tokens.revoke(body.token.to_record(), body.kind)
        return Envelope(status="ok", data={"revoked": body.kind.value})

    return router
