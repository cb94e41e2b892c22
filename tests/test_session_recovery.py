"""Tests for the bounded session reload used by the callback."""

from conftest import InstrumentedSessionStore

from oidc_consumer.service.errors import SessionLoadFailedError
from oidc_consumer.service.session_recovery import MAX_LOAD_ATTEMPTS, SessionRecoveryProtocol
from oidc_consumer.storage.models import SessionRecord


async def _stored_session(store, state="nonce-1"):
    record = SessionRecord.new()
    record.state = state
    record.redirect_destination = "https://app.example.com/home"
    await store.save(record)
    # The request-side copy has not seen the write
    return SessionRecord(id=record.id)


async def test_visible_state_loads_on_first_attempt(recording_sleep):
    store = InstrumentedSessionStore()
    session = await _stored_session(store)
    recovery = SessionRecoveryProtocol(store, sleep=recording_sleep)

    outcome = await recovery.load_session(session, retry_on_failure=True, delay_ms=500)

    assert outcome.loaded
    assert outcome.attempts == 1
    assert recording_sleep.delays == []
    assert session.state == "nonce-1"
    assert session.redirect_destination == "https://app.example.com/home"


async def test_lagging_store_recovers_on_second_attempt(recording_sleep):
    store = InstrumentedSessionStore(stale_reloads=1)
    session = await _stored_session(store)
    recovery = SessionRecoveryProtocol(store, sleep=recording_sleep)

    outcome = await recovery.load_session(session, retry_on_failure=True, delay_ms=500)

    assert outcome.loaded
    assert outcome.attempts == 2
    assert store.reload_calls == 2
    assert recording_sleep.delays == [0.5]


async def test_gives_up_after_max_attempts(recording_sleep):
    store = InstrumentedSessionStore(stale_reloads=10)
    session = await _stored_session(store)
    recovery = SessionRecoveryProtocol(store, sleep=recording_sleep)

    outcome = await recovery.load_session(session, retry_on_failure=True, delay_ms=250)

    assert not outcome.loaded
    assert outcome.attempts == MAX_LOAD_ATTEMPTS
    assert store.reload_calls == MAX_LOAD_ATTEMPTS
    assert recording_sleep.delays == [0.25]
    assert isinstance(outcome.error, SessionLoadFailedError)
    assert outcome.error.error_code == "SESSION_LOAD_FAILED"


async def test_no_retry_makes_single_attempt(recording_sleep):
    store = InstrumentedSessionStore(stale_reloads=1)
    session = await _stored_session(store)
    recovery = SessionRecoveryProtocol(store, sleep=recording_sleep)

    outcome = await recovery.load_session(session, retry_on_failure=False, delay_ms=500)

    assert not outcome.loaded
    assert outcome.attempts == 1
    assert recording_sleep.delays == []


async def test_reload_error_treated_as_missing_state(recording_sleep):
    class BrokenStore(InstrumentedSessionStore):
        async def reload(self, record):
            self.reload_calls += 1
            raise ConnectionError("replica unreachable")

    store = BrokenStore()
    session = SessionRecord.new()
    recovery = SessionRecoveryProtocol(store, sleep=recording_sleep)

    outcome = await recovery.load_session(session, retry_on_failure=True, delay_ms=0)

    assert not outcome.loaded
    assert store.reload_calls == 2
    assert recording_sleep.delays == [0.0]


async def test_missing_record_clears_flow_fields(recording_sleep):
    store = InstrumentedSessionStore()
    session = SessionRecord.new()
    session.state = "stale"
    recovery = SessionRecoveryProtocol(store, sleep=recording_sleep)

    outcome = await recovery.load_session(session, retry_on_failure=False, delay_ms=0)

    assert not outcome.loaded
    assert session.state is None
