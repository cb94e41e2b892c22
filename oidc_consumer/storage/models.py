from __future__ import annotations

import copy
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


@dataclass
class SessionRecord:
    """Per-browser session owned by the session store.

    The flow controller only touches ``state`` and ``redirect_destination``;
    both are flow-scoped and are set and erased together. ``data`` carries
    whatever else the host application keeps in the session.
    """

    id: str
    state: Optional[str] = None
    redirect_destination: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def new(cls) -> "SessionRecord":
        return cls(id=str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state,
            "redirect_destination": self.redirect_destination,
            "data": copy.deepcopy(self.data),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "SessionRecord":
        return cls(
            id=str(payload["id"]),
            state=payload.get("state"),
            redirect_destination=payload.get("redirect_destination"),
            data=dict(payload.get("data") or {}),
        )

    def replace_with(self, other: "SessionRecord") -> None:
        """Copy the backing-store view of the record into this instance."""
        self.state = other.state
        self.redirect_destination = other.redirect_destination
        self.data = copy.deepcopy(other.data)

    def clear_flow(self) -> None:
        self.state = None
        self.redirect_destination = None


class TokenKind(str, Enum):
    """Which issued token a revocation targets."""

    ACCESS = "access_token"
    REFRESH = "refresh_token"
    ALL = "all"


@dataclass
class TokenRecord:
    """Token set returned by the identity provider.

    The flow controller never inspects the fields; it hands the record to
    the caller and back to the provider client for refresh or revocation.
    """

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_at: Optional[float] = None  # Unix timestamp
    scope: Optional[str] = None
    id_token: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, payload: Dict[str, Any], *, now: Optional[float] = None) -> "TokenRecord":
        issued = time.time() if now is None else now
        expires_in = payload.get("expires_in")
        expires_at: Optional[float] = None
        if expires_in is not None:
            try:
                expires_at = issued + float(expires_in)
            except (TypeError, ValueError):
                expires_at = None
        elif payload.get("expires_at") is not None:
            expires_at = float(payload["expires_at"])
        return cls(
            access_token=str(payload["access_token"]),
            refresh_token=payload.get("refresh_token"),
            token_type=payload.get("token_type") or "Bearer",
            expires_at=expires_at,
            scope=payload.get("scope"),
            id_token=payload.get("id_token"),
            raw=dict(payload),
        )

    def expired(self, within: float = 0.0) -> bool:
        """True when the access token expires within ``within`` seconds."""
        if self.expires_at is None:
            return False
        return self.expires_at <= time.time() + within

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "expires_at": self.expires_at,
            "scope": self.scope,
            "id_token": self.id_token,
        }
