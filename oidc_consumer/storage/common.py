"""Session store contract shared by the memory and redis backends."""

from __future__ import annotations

from typing import Optional, Protocol

from oidc_consumer.storage.models import SessionRecord

SESSION_KEY_PREFIX = "oidc:session:"


class SessionStore(Protocol):
    async def load(self, session_id: str) -> Optional[SessionRecord]: ...

    async def save(self, record: SessionRecord) -> None: ...

    async def destroy(self, session_id: str) -> None: ...

    async def reload(self, record: SessionRecord) -> None:
        """Re-read the backing state of ``record`` in place.

        A record that no longer exists in the backend comes back with its
        flow fields cleared.
        """
        ...


def session_key(session_id: str) -> str:
    return f"{SESSION_KEY_PREFIX}{session_id}"
