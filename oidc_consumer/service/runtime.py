from __future__ import annotations

import asyncio
import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from oidc_consumer.config import SessionBackend, get_settings, reset_settings_cache
from oidc_consumer.logging import get_logger
from oidc_consumer.service.auth_client import AuthServerClient, HttpxAuthServerClient
from oidc_consumer.service.flow import AuthorizationFlowController
from oidc_consumer.service.tokens import TokenLifecycleManager
from oidc_consumer.storage.memory import MemorySessionStore
from oidc_consumer.storage.redis_cache import RedisSessionStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except Exception:
        return "***url_parse_error***"


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self, *, client: Optional[AuthServerClient] = None):
        self.settings = get_settings()
        self.flow_config = self.settings.flow_config()
        logger.info(
            "runtime_init_started",
            session_backend=self.settings.session_backend.value,
            test_mode=self.settings.test_mode,
        )

        self.store: Union[MemorySessionStore, RedisSessionStore]
        if self.settings.session_backend == SessionBackend.REDIS:
            try:
                store = RedisSessionStore(
                    self.settings.redis_url, ttl_seconds=self.settings.session_ttl_seconds
                )
                store.verify_connection()
            except Exception as exc:
                logger.error(
                    "runtime_store_init_failed",
                    redis_url=_mask_url_password(self.settings.redis_url),
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                raise RuntimeError(
                    "Redis session store unavailable; start Redis or set SESSION_BACKEND=memory"
                ) from exc
            self.store = store
        else:
            if not self.settings.test_mode:
                logger.warning(
                    "memory_session_store",
                    message="Sessions are process-local; do not run more than one worker",
                )
            self.store = MemorySessionStore()

        self.client: AuthServerClient = client or HttpxAuthServerClient(self.flow_config.client)
        self.flow = AuthorizationFlowController(self.flow_config, self.store, self.client)
        self.tokens = TokenLifecycleManager(self.flow_config, self.client)

        logger.info(
            "runtime_initialized",
            session_backend=self.settings.session_backend.value,
            authorize_endpoint=self.flow_config.client.authorize_endpoint,
            token_endpoint=self.flow_config.client.token_endpoint,
            redirect_patterns=len(self.flow_config.allowed_redirect_patterns),
        )

    async def close(self) -> None:
        if isinstance(self.store, RedisSessionStore):
            await self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Double-checked locking: the unlocked fast path covers the common case,
    the locked re-check prevents two threads from both creating a runtime.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests(*, client: Optional[AuthServerClient] = None) -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None and isinstance(runtime.store, RedisSessionStore):
            try:
                loop = asyncio.get_running_loop()
                loop.create_task(runtime.close())
            except RuntimeError:
                asyncio.run(runtime.close())

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(client=client)
        return runtime
