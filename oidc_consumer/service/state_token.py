from __future__ import annotations

import hmac
import uuid
from typing import Optional


def generate() -> str:
    """Fresh CSRF nonce for one authorization attempt (random UUID4)."""
    return str(uuid.uuid4())


def verify(expected: Optional[str], supplied: Optional[str]) -> bool:
    """Constant-time comparison of the session nonce with the echoed state."""
    if not isinstance(expected, str) or not isinstance(supplied, str):
        return False
    if not expected:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8"))
