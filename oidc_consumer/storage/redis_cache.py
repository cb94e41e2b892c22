from __future__ import annotations

import json
from typing import Optional

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from oidc_consumer.logging import get_logger
from oidc_consumer.storage.common import session_key
from oidc_consumer.storage.errors import SessionStoreError
from oidc_consumer.storage.models import SessionRecord

logger = get_logger(__name__)


class RedisSessionStore:
    """Redis-backed session store.

    Reads served by a replica may trail the primary; the flow controller
    compensates for that with its bounded reload.
    """

    DEFAULT_OPERATION_TIMEOUT = 5.0  # seconds

    def __init__(
        self,
        redis_url: str,
        *,
        ttl_seconds: int = 600,
        socket_timeout: float = DEFAULT_OPERATION_TIMEOUT,
        client: Optional[aioredis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.ttl_seconds = max(1, int(ttl_seconds))
        self.client = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving flows."""
        # Short-lived sync client so the async client is not bound to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def load(self, session_id: str) -> Optional[SessionRecord]:
        try:
            raw = await self.client.get(session_key(session_id))
        except RedisError as exc:
            raise SessionStoreError(
                "session load failed", {"session_id": session_id, "error": str(exc)}
            ) from exc
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("session_payload_corrupt", session_id=session_id)
            return None
        if not isinstance(payload, dict) or "id" not in payload:
            logger.warning("session_payload_invalid", session_id=session_id)
            return None
        return SessionRecord.from_dict(payload)

    async def save(self, record: SessionRecord) -> None:
        try:
            await self.client.set(
                session_key(record.id), json.dumps(record.to_dict()), ex=self.ttl_seconds
            )
        except RedisError as exc:
            raise SessionStoreError(
                "session save failed", {"session_id": record.id, "error": str(exc)}
            ) from exc

    async def destroy(self, session_id: str) -> None:
        try:
            await self.client.delete(session_key(session_id))
        except RedisError as exc:
            raise SessionStoreError(
                "session destroy failed", {"session_id": session_id, "error": str(exc)}
            ) from exc

    async def reload(self, record: SessionRecord) -> None:
        stored = await self.load(record.id)
        if stored is None:
            record.clear_flow()
            return
        record.replace_with(stored)

    async def close(self) -> None:
        """Close the connection pool when shutting down or resetting the runtime."""
        await self.client.close()
        await self.client.connection_pool.disconnect()
