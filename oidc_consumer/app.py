from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI

from oidc_consumer.api.error_handling import register_exception_handlers
from oidc_consumer.api.routes import AuthenticatedHandler, build_router
from oidc_consumer.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 3


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close the session store connection pool on shutdown."""
    yield

    from oidc_consumer.service import runtime as runtime_module

    try:
        if runtime_module.runtime is not None:
            await runtime_module.runtime.close()
            logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


async def add_correlation_id(request, call_next):
    """Bind ``X-Request-ID`` (or a fresh UUID) to the request's log context."""
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    # Login redirects carry a fresh nonce and must never be replayed from a cache
    response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, private")
    return response


async def health() -> Dict[str, Any]:
    """Report session store reachability."""
    from oidc_consumer.service.runtime import get_runtime

    runtime = get_runtime()
    checks: Dict[str, Dict[str, Any]] = {}
    healthy = True
    verify = getattr(runtime.store, "verify_connection", None)
    if verify is None:
        checks["session_store"] = {"status": "healthy", "type": "memory"}
    else:
        try:
            await asyncio.wait_for(asyncio.to_thread(verify), HEALTH_CHECK_TIMEOUT_SECONDS)
            checks["session_store"] = {"status": "healthy", "type": "redis"}
        except asyncio.TimeoutError:
            logger.error(
                "health_check_timeout", component="session_store", timeout=HEALTH_CHECK_TIMEOUT_SECONDS
            )
            checks["session_store"] = {"status": "unhealthy", "type": "redis"}
            healthy = False
        except Exception as exc:
            logger.error("health_check_session_store_failed", error=str(exc))
            checks["session_store"] = {"status": "unhealthy", "type": "redis"}
            healthy = False

    return {
        "status": "healthy" if healthy else "unhealthy",
        "checks": checks,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def create_app(*, on_authenticated: Optional[AuthenticatedHandler] = None) -> FastAPI:
    app = FastAPI(title="OIDC Consumer", version=__version__, lifespan=lifespan)
    # Registered last runs first: correlation id wraps the security headers
    app.middleware("http")(add_security_headers)
    app.middleware("http")(add_correlation_id)
    register_exception_handlers(app)
    app.include_router(build_router(on_authenticated=on_authenticated))
    app.get("/healthz")(health)
    return app
