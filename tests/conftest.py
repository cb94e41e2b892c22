import asyncio
import inspect
import os
import sys
from pathlib import Path

# Set before any import that might build settings or the runtime
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("SESSION_BACKEND", "memory")
os.environ.setdefault("SESSION_COOKIE_SECURE", "false")
os.environ.setdefault("OIDC_SCOPE", "openid profile")
os.environ.setdefault("OIDC_CLIENT_ID", "test-client")
os.environ.setdefault("OIDC_CLIENT_SECRET", "test-secret")
os.environ.setdefault("OIDC_AUTHORIZE_HOST", "https://idp.example.com")
os.environ.setdefault("OIDC_TOKEN_HOST", "https://idp.example.com")
os.environ.setdefault(
    "OIDC_ALLOWED_REDIRECT_PATTERNS",
    "https://app.example.com/*,re:^https://[a-z]+\\.partner\\.example\\.org/",
)
os.environ.setdefault("OIDC_SESSION_RETRY_DELAY_MS", "0")
os.environ.setdefault("LOG_JSON", "false")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from oidc_consumer.config import ClientConfig, FlowConfig  # noqa: E402
from oidc_consumer.service.runtime import reset_runtime_for_tests  # noqa: E402
from oidc_consumer.storage.errors import SessionStoreError  # noqa: E402
from oidc_consumer.storage.memory import MemorySessionStore  # noqa: E402
from oidc_consumer.storage.models import TokenKind, TokenRecord  # noqa: E402


class FakeAuthServerClient:
    """AuthServerClient double that records every call."""

    def __init__(self, token=None, *, exchange_error=None, refresh_error=None, revoke_error=None):
        self.token = token or TokenRecord(
            access_token="access-1", refresh_token="refresh-1", expires_at=4102444800.0
        )
        self.exchange_error = exchange_error
        self.refresh_error = refresh_error
        self.revoke_error = revoke_error
        self.authorize_calls = []
        self.exchange_calls = []
        self.refresh_calls = []
        self.revoke_calls = []
        self.revoke_all_calls = []

    def build_authorize_url(self, params):
        self.authorize_calls.append(dict(params))
        query = "&".join(f"{k}={v}" for k, v in params.items())
        return f"https://idp.example.com/oauth/authorize?{query}"

    async def exchange_code(self, params, transport_options=None):
        self.exchange_calls.append((dict(params), transport_options))
        if self.exchange_error is not None:
            raise self.exchange_error
        return self.token

    async def refresh_token(self, token, params, transport_options=None):
        self.refresh_calls.append((token, dict(params), transport_options))
        if self.refresh_error is not None:
            raise self.refresh_error
        return TokenRecord(access_token="access-2", refresh_token=token.refresh_token)

    async def revoke_token(self, token, kind, transport_options=None):
        self.revoke_calls.append((token, TokenKind(kind), transport_options))
        if self.revoke_error is not None:
            raise self.revoke_error

    async def revoke_all_tokens(self, token, transport_options=None):
        self.revoke_all_calls.append((token, transport_options))
        if self.revoke_error is not None:
            raise self.revoke_error


class InstrumentedSessionStore(MemorySessionStore):
    """Memory store with replication lag and failure injection."""

    def __init__(self, *, stale_reloads=0, fail_save=False, fail_destroy=False):
        super().__init__()
        self.stale_reloads = stale_reloads
        self.fail_save = fail_save
        self.fail_destroy = fail_destroy
        self.reload_calls = 0
        self.save_calls = 0
        self.destroy_calls = 0

    async def save(self, record):
        self.save_calls += 1
        if self.fail_save:
            raise SessionStoreError("session save failed", {"session_id": record.id})
        await super().save(record)

    async def destroy(self, session_id):
        self.destroy_calls += 1
        if self.fail_destroy:
            raise SessionStoreError("session destroy failed", {"session_id": session_id})
        await super().destroy(session_id)

    async def reload(self, record):
        self.reload_calls += 1
        if self.stale_reloads > 0:
            # Replica has not seen the write yet
            self.stale_reloads -= 1
            record.clear_flow()
            return
        await super().reload(record)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def client_config():
    return ClientConfig(
        id="test-client",
        secret="test-secret",
        authorize_host="https://idp.example.com",
        token_host="https://idp.example.com",
    )


@pytest.fixture
def flow_config(client_config):
    return FlowConfig(
        scope="openid profile",
        allowed_redirect_patterns=["https://app.example.com/*"],
        session_retry_delay_ms=500,
        client=client_config,
    )


@pytest.fixture
def fake_client():
    return FakeAuthServerClient()


@pytest.fixture
def store():
    return InstrumentedSessionStore()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
