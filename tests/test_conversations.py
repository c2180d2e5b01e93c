import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from booth.core.config import get_settings
from booth.core.errors import (
    ConfigurationError,
    MissingIdentifierError,
    PersonaMismatchError,
    SessionBusyError,
    VendorError,
)
from booth.core.flags import get_flags
from booth.services.conversations import (
    ConversationOrchestrator,
    ConversationRequest,
    build_conversation_name,
)
from booth.services.session_store import MemorySessionStore


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def store():
    return MemorySessionStore()


@pytest.fixture
def clock():
    return Clock(datetime.now(timezone.utc))


@pytest.fixture
def orchestrator(store, fake_tavus, clock):
    return ConversationOrchestrator(store, fake_tavus, get_settings(), get_flags(), clock=clock)


def start(orchestrator, session_id="abc-123", **kwargs):
    return asyncio.run(orchestrator.start(ConversationRequest(session_id=session_id, **kwargs)))


def test_new_session_creates_one_conversation(orchestrator, store, fake_tavus):
    result = start(orchestrator, source="NFC")

    assert result.reused is False
    assert result.conversation_id == "c1"
    assert result.conversation_url == "https://tavus.daily.co/c1"
    assert len(fake_tavus.calls) == 1

    session = asyncio.run(store.get("abc-123"))
    assert session.status == "created"
    assert session.source == "nfc"
    assert session.conversation_id == "c1"


def test_reuse_within_ttl_makes_no_vendor_call(orchestrator, fake_tavus, clock):
    first = start(orchestrator)
    clock.advance(seconds=10)
    second = start(orchestrator)

    assert second.reused is True
    assert second.conversation_id == first.conversation_id
    assert second.conversation_url == first.conversation_url
    assert len(fake_tavus.calls) == 1


def test_active_session_is_reused(orchestrator, store, fake_tavus):
    start(orchestrator)
    asyncio.run(store.update("abc-123", {"status": "active"}))

    assert start(orchestrator).reused is True
    assert len(fake_tavus.calls) == 1


def test_expired_session_gets_fresh_conversation(orchestrator, store, fake_tavus, clock):
    start(orchestrator)
    statuses = []
    original_transition = store.transition

    async def spy(session_id, expected, fields):
        statuses.append(fields.get("status"))
        return await original_transition(session_id, expected, fields)

    store.transition = spy

    clock.advance(seconds=3700)
    result = start(orchestrator)

    assert result.reused is False
    assert result.conversation_id == "c2"
    assert len(fake_tavus.calls) == 2
    assert statuses[0] == "expired"
    assert asyncio.run(store.get("abc-123")).status == "created"

    # the new conversation restarts the TTL clock
    clock.advance(seconds=60)
    assert start(orchestrator).reused is True


def test_ended_session_is_recreated(orchestrator, store, fake_tavus):
    start(orchestrator)
    asyncio.run(store.update("abc-123", {"status": "ended"}))

    result = start(orchestrator)
    assert result.reused is False
    assert len(fake_tavus.calls) == 2


def test_concurrent_first_calls_reach_vendor_once(orchestrator, fake_tavus):
    async def race():
        return await asyncio.gather(
            orchestrator.start(ConversationRequest(session_id="race-1")),
            orchestrator.start(ConversationRequest(session_id="race-1")),
            return_exceptions=True,
        )

    results = asyncio.run(race())
    assert len(fake_tavus.calls) == 1
    assert sum(isinstance(r, SessionBusyError) for r in results) == 1


def test_stale_claim_is_taken_over(store, fake_tavus):
    asyncio.run(store.claim("abc-123", {"status": "creating"}))
    later = Clock(datetime.now(timezone.utc) + timedelta(hours=1))
    orchestrator = ConversationOrchestrator(store, fake_tavus, get_settings(), get_flags(), clock=later)

    assert start(orchestrator).conversation_id == "c1"


def test_fresh_claim_is_busy(store, fake_tavus):
    asyncio.run(store.claim("abc-123", {"status": "creating"}))
    now = Clock(datetime.now(timezone.utc))
    orchestrator = ConversationOrchestrator(store, fake_tavus, get_settings(), get_flags(), clock=now)

    with pytest.raises(SessionBusyError):
        start(orchestrator)
    assert fake_tavus.calls == []


def test_missing_api_key(env, store, fake_tavus, clock):
    env.setenv("TAVUS_API_KEY", "")
    get_settings.cache_clear()
    orchestrator = ConversationOrchestrator(store, fake_tavus, get_settings(), get_flags(), clock=clock)

    with pytest.raises(ConfigurationError) as exc:
        start(orchestrator)
    assert exc.value.status_code == 500
    assert asyncio.run(store.get("abc-123")) is None


def test_missing_identifiers(env, store, fake_tavus, clock):
    env.setenv("TAVUS_PERSONA_ID", "")
    env.setenv("TAVUS_REPLICA_ID", "")
    get_settings.cache_clear()
    orchestrator = ConversationOrchestrator(store, fake_tavus, get_settings(), get_flags(), clock=clock)

    with pytest.raises(MissingIdentifierError) as exc:
        start(orchestrator)
    assert exc.value.status_code == 400
    assert fake_tavus.calls == []


def test_request_identifiers_override_defaults(orchestrator, fake_tavus):
    start(orchestrator, persona_id="p-req")
    assert fake_tavus.calls[0]["persona_id"] == "p-req"
    assert fake_tavus.calls[0]["replica_id"] == "r-default"


def test_payload_shape(env, store, fake_tavus, clock):
    env.setenv("TAVUS_WEBHOOK_SECRET", "s3cret")
    get_settings.cache_clear()
    orchestrator = ConversationOrchestrator(store, fake_tavus, get_settings(), get_flags(), clock=clock)

    start(orchestrator, source="qr", attendee_name="Dana", document_ids=["d1"])
    payload = fake_tavus.calls[0]

    assert payload["conversation_name"] == "AI Conversation - Dana (qr) [abc-123]"
    assert payload["properties"]["max_call_duration"] == 150
    assert payload["properties"]["enable_transcription"] is True
    assert payload["custom_greeting"]
    assert payload["conversational_context"]
    assert payload["document_ids"] == ["d1"]
    assert payload["document_retrieval_strategy"] == "balanced"
    assert payload["callback_url"] == "https://booth.example.com/api/webhook/conversation-ended"


def test_no_callback_without_secret(orchestrator, fake_tavus):
    start(orchestrator)
    assert "callback_url" not in fake_tavus.calls[0]


def test_vendor_error_marks_session_failed_and_allows_retry(orchestrator, store, fake_tavus):
    fake_tavus.error = VendorError(status_code=429, code="TAVUS_MAX_CONCURRENT")
    with pytest.raises(VendorError):
        start(orchestrator)
    assert asyncio.run(store.get("abc-123")).status == "failed"

    fake_tavus.error = None
    assert start(orchestrator).reused is False
    assert asyncio.run(store.get("abc-123")).status == "created"


def test_persona_mismatch_is_fatal(orchestrator, store, fake_tavus):
    fake_tavus.echo = {"persona_id": "p-someone-else"}
    with pytest.raises(PersonaMismatchError) as exc:
        start(orchestrator)
    assert exc.value.status_code == 500
    assert asyncio.run(store.get("abc-123")).status == "failed"


def test_persona_check_can_be_disabled(env, store, fake_tavus, clock):
    env.setenv("FF_VERIFY_PERSONA", "false")
    get_flags.cache_clear()
    fake_tavus.echo = {"persona_id": "p-someone-else"}
    orchestrator = ConversationOrchestrator(store, fake_tavus, get_settings(), get_flags(), clock=clock)

    assert start(orchestrator).conversation_id == "c1"


def test_conversation_name_without_attendee():
    assert build_conversation_name("Acme", "0123456789", "nfc", None) == "Acme (nfc) [01234567]"
