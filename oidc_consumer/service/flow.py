"""Authorization-code flow controller.

Two middleware-shaped entry points share no state outside the session:

``initiate``
    validates the post-login destination, binds a fresh CSRF nonce and the
    destination into the session, persists it and redirects the browser to
    the identity provider.

``callback``
    recovers the session if its nonce is not visible yet, verifies the
    echoed ``state``, destroys the session and only then exchanges the
    authorization code. Verification, destruction and exchange always run
    in that order.

Every failure is handed to ``next(error)``; nothing is raised past the
entry points.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from oidc_consumer.config import FlowConfig
from oidc_consumer.logging import get_logger
from oidc_consumer.service import state_token
from oidc_consumer.service.auth_client import AuthServerClient, TransportOptions
from oidc_consumer.service.errors import (
    AuthorizationDeniedError,
    DisallowedRedirectError,
    MissingDestinationError,
    SecretMismatchError,
    SessionDestroyError,
    ValidationError,
)
from oidc_consumer.service.redirect_policy import RedirectPolicy
from oidc_consumer.service.session_recovery import SessionRecoveryProtocol
from oidc_consumer.storage.common import SessionStore
from oidc_consumer.storage.models import SessionRecord

logger = get_logger(__name__)

DESTINATION_PARAM = "redirectUri"

NextFunction = Callable[..., Union[Awaitable[None], None]]


@dataclass
class FlowRequest:
    """What the controller needs from the hosting framework's request."""

    query: Mapping[str, str]
    host: str
    session: SessionRecord
    base_path: str = ""


@dataclass
class FlowResponse:
    """Terminal response state plus values handed to the next stage."""

    redirect_url: Optional[str] = None
    status_code: int = 200
    locals: Dict[str, Any] = field(default_factory=dict)

    def redirect(self, url: str, status_code: int = 302) -> None:
        self.redirect_url = url
        self.status_code = status_code


async def _call_next(next: NextFunction, error: Optional[BaseException] = None) -> None:
    result = next(error) if error is not None else next()
    if inspect.isawaitable(result):
        await result


class AuthorizationFlowController:
    def __init__(
        self,
        config: FlowConfig,
        store: SessionStore,
        client: AuthServerClient,
        *,
        policy: Optional[RedirectPolicy] = None,
        recovery: Optional[SessionRecoveryProtocol] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.client = client
        self.policy = policy or RedirectPolicy()
        self.recovery = recovery or SessionRecoveryProtocol(store)

    def get_callback_url(self, request: FlowRequest) -> str:
        if self.config.callback_url:
            return self.config.callback_url
        route = self.config.callback_route or f"{request.base_path.rstrip('/')}/callback"
        return f"https://{request.host}{route}"

    async def _destroy_quietly(self, session: SessionRecord) -> None:
        try:
            await self.store.destroy(session.id)
        except Exception as exc:
            logger.error(
                "session_destroy_failed",
                session_id=session.id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
        session.clear_flow()

    # -- initiate ---------------------------------------------------------

    async def initiate(
        self,
        request: FlowRequest,
        response: FlowResponse,
        next: NextFunction,
        extra_params: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Start a flow and redirect to the provider's authorize endpoint."""
        try:
            await self._start(request, response, extra_params)
        except Exception as exc:
            await _call_next(next, exc)

    async def _start(
        self,
        request: FlowRequest,
        response: FlowResponse,
        extra_params: Optional[Mapping[str, Any]],
    ) -> None:
        session = request.session
        destination = request.query.get(DESTINATION_PARAM)
        if not destination:
            logger.info("flow_missing_destination", session_id=session.id)
            raise MissingDestinationError()

        if not self.policy.is_allowed(destination, self.config.allowed_redirect_patterns):
            logger.warning(
                "redirect_destination_denied", session_id=session.id, destination=destination
            )
            await self._destroy_quietly(session)
            raise DisallowedRedirectError(detail={"destination": destination})

        nonce = state_token.generate()
        session.redirect_destination = destination
        session.state = nonce
        await self.store.save(session)

        # redirect_uri and state are never overridable by extras
        params: Dict[str, Any] = {"scope": self.config.scope}
        params.update(extra_params or {})
        params["redirect_uri"] = self.get_callback_url(request)
        params["state"] = nonce
        authorize_url = self.client.build_authorize_url(params)

        outcome = await self.recovery.load_session(
            session, retry_on_failure=False, delay_ms=self.config.session_retry_delay_ms
        )
        if not outcome.loaded:
            logger.warning("session_write_not_visible", session_id=session.id)

        logger.info("flow_initiated", session_id=session.id, destination=destination)
        response.redirect(authorize_url)

    # -- callback ---------------------------------------------------------

    async def callback(
        self,
        request: FlowRequest,
        response: FlowResponse,
        next: NextFunction,
        extra_params: Optional[Mapping[str, Any]] = None,
        transport_options: Optional[TransportOptions] = None,
    ) -> None:
        """Finish a flow; on success the token is in ``response.locals["token"]``."""
        try:
            proceed = await self._complete(request, response, extra_params, transport_options)
        except Exception as exc:
            await _call_next(next, exc)
            return
        if proceed:
            await _call_next(next)

    async def _complete(
        self,
        request: FlowRequest,
        response: FlowResponse,
        extra_params: Optional[Mapping[str, Any]],
        transport_options: Optional[TransportOptions],
    ) -> bool:
        session = request.session
        if not session.state:
            outcome = await self.recovery.load_session(
                session, retry_on_failure=True, delay_ms=self.config.session_retry_delay_ms
            )
            if not outcome.loaded:
                raise outcome.error

        session_state = session.state
        if not session_state:
            # Unverifiable session: stop without acting on it
            logger.info("callback_session_unverifiable", session_id=session.id)
            return False

        if not state_token.verify(session_state, request.query.get("state")):
            logger.warning("state_mismatch", session_id=session.id)
            raise SecretMismatchError()

        destination = session.redirect_destination
        if not destination:
            logger.warning("callback_missing_destination", session_id=session.id)
            await self._destroy_quietly(session)
            raise MissingDestinationError()

        response.locals["session_data"] = session.to_dict()
        try:
            await self.store.destroy(session.id)
        except Exception as exc:
            logger.error(
                "session_destroy_failed",
                session_id=session.id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise SessionDestroyError(detail={"session_id": session.id}) from exc
        session.clear_flow()

        provider_error = request.query.get("error")
        if provider_error:
            logger.warning("provider_denied_authorization", provider_error=provider_error)
            raise AuthorizationDeniedError(
                "identity provider denied authorization",
                detail={
                    "error": provider_error,
                    "error_description": request.query.get("error_description"),
                },
            )
        code = request.query.get("code")
        if not code:
            raise ValidationError("missing authorization code")

        params: Dict[str, Any] = {"scope": self.config.scope}
        params.update(extra_params or {})
        params["code"] = code
        params["redirect_uri"] = self.get_callback_url(request)
        try:
            token = await self.client.exchange_code(params, transport_options)
        except Exception as exc:
            logger.warning(
                "code_exchange_failed", error_type=type(exc).__name__, error=str(exc)
            )
            raise

        response.locals["token"] = token
        response.locals["destination"] = destination
        logger.info("flow_completed", session_id=session.id)
        return True
