"""Bounded session reload compensating for session-store replication lag.

A write issued while handling ``initiate`` may not be visible yet to the
process or replica serving ``callback``. Reloading once more after a short
delay covers the common case without turning into a polling loop.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

from oidc_consumer.logging import get_logger
from oidc_consumer.service.errors import SessionLoadFailedError
from oidc_consumer.storage.common import SessionStore
from oidc_consumer.storage.models import SessionRecord

logger = get_logger(__name__)

MAX_LOAD_ATTEMPTS = 2

Sleeper = Callable[[float], Awaitable[None]]


@dataclass
class LoadOutcome:
    loaded: bool
    attempts: int
    error: SessionLoadFailedError | None = None


class SessionRecoveryProtocol:
    def __init__(self, store: SessionStore, *, sleep: Sleeper = asyncio.sleep) -> None:
        self.store = store
        self._sleep = sleep

    async def _reload(self, session: SessionRecord, attempt: int) -> None:
        try:
            await self.store.reload(session)
        except Exception as exc:
            # Treated like a reload that still lacks state
            logger.warning(
                "session_reload_failed",
                session_id=session.id,
                attempt=attempt,
                error_type=type(exc).__name__,
                error=str(exc),
            )

    async def load_session(
        self, session: SessionRecord, retry_on_failure: bool, delay_ms: int
    ) -> LoadOutcome:
        """Reload ``session`` until its ``state`` is visible.

        Makes one attempt, plus exactly one more after ``delay_ms`` when
        ``retry_on_failure`` is set.
        """
        max_attempts = MAX_LOAD_ATTEMPTS if retry_on_failure else 1
        attempt = 0
        while True:
            attempt += 1
            await self._reload(session, attempt)
            if session.state:
                if attempt > 1:
                    logger.info("session_recovered", session_id=session.id, attempts=attempt)
                return LoadOutcome(loaded=True, attempts=attempt)
            if attempt >= max_attempts:
                break
            await self._sleep(max(0, delay_ms) / 1000.0)

        logger.warning("session_load_failed", session_id=session.id, attempts=attempt)
        return LoadOutcome(loaded=False, attempts=attempt, error=SessionLoadFailedError())
