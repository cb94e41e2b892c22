from __future__ import annotations

from typing import Optional, Union

from oidc_consumer.config import FlowConfig
from oidc_consumer.logging import get_logger
from oidc_consumer.service.auth_client import AuthServerClient, TransportOptions
from oidc_consumer.storage.models import TokenKind, TokenRecord

logger = get_logger(__name__)


class TokenLifecycleManager:
    """Refresh and revoke tokens issued by a completed flow.

    Provider failures are re-raised unchanged; interpreting them is up to
    the caller.
    """

    def __init__(self, config: FlowConfig, client: AuthServerClient) -> None:
        self.config = config
        self.client = client

    async def refresh(
        self,
        token: TokenRecord,
        scope: Optional[str] = None,
        transport_options: Optional[TransportOptions] = None,
    ) -> TokenRecord:
        effective_scope = scope or self.config.scope
        try:
            return await self.client.refresh_token(
                token, {"scope": effective_scope}, transport_options
            )
        except Exception as exc:
            logger.warning("token_refresh_failed", error_type=type(exc).__name__, error=str(exc))
            raise

    async def revoke(
        self,
        token: TokenRecord,
        kind: Union[TokenKind, str],
        transport_options: Optional[TransportOptions] = None,
    ) -> None:
        kind = TokenKind(kind)
        try:
            if kind == TokenKind.ALL:
                await self.client.revoke_all_tokens(token, transport_options)
            else:
                await self.client.revoke_token(token, kind, transport_options)
        except Exception as exc:
            logger.warning(
                "token_revoke_failed",
                kind=kind.value,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
