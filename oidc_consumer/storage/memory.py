from __future__ import annotations

import threading
from typing import Dict, Optional

from oidc_consumer.logging import get_logger
from oidc_consumer.storage.models import SessionRecord

logger = get_logger(__name__)


class MemorySessionStore:
    """In-process session store for development and tests.

    Records are copied on the way in and out so a caller holding a
    ``SessionRecord`` only sees backend changes through ``reload``.
    """

    def __init__(self) -> None:
        self._data_lock = threading.RLock()
        self._sessions: Dict[str, dict] = {}

    async def load(self, session_id: str) -> Optional[SessionRecord]:
        with self._data_lock:
            payload = self._sessions.get(session_id)
        if payload is None:
            return None
        return SessionRecord.from_dict(payload)

    async def save(self, record: SessionRecord) -> None:
        with self._data_lock:
            self._sessions[record.id] = record.to_dict()
        logger.debug("session_saved", session_id=record.id)

    async def destroy(self, session_id: str) -> None:
        with self._data_lock:
            self._sessions.pop(session_id, None)
        logger.debug("session_destroyed", session_id=session_id)

    async def reload(self, record: SessionRecord) -> None:
        stored = await self.load(record.id)
        if stored is None:
            record.clear_flow()
            return
        record.replace_with(stored)

    def __len__(self) -> int:
        with self._data_lock:
            return len(self._sessions)
