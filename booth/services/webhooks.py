"""
Tavus webhook ingestion.

Order of checks for every delivery:
  1. HMAC-SHA256 signature check when a secret is set AND verification is on.
  2. Dedupe on the signature header (or a body hash). Replays inside the
     TTL are acknowledged with duplicate=true and dropped. A delivery that
     fails while being applied releases its key so the retry goes through.
  3. Classify the event and update the matching session.

Once 1 and 2 pass we always acknowledge, even when no session matches;
Tavus retries anything that is not a 2xx.
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from ..core.cache import Cache
from ..core.config import Settings
from ..core.errors import WebhookAuthError
from ..core.flags import FeatureFlags
from ..core.guardrails import ContentInspector
from .conversations import (
    STATUS_ACTIVE,
    STATUS_ENDED,
    STATUS_EXPIRED,
    STATUS_PERSONA_DRIFT,
)
from .session_store import SessionRecord, SessionStore

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-tavus-signature"

# ── Event classes ─────────────────────────────────────────────────────

TERMINATION_EVENTS = {
    "system.shutdown",
    "conversation.ended",
    "application.conversation_ended",
}
LIVENESS_EVENTS = {
    "system.replica_joined",
    "conversation.participant_joined",
    "participant_joined",
}
TRANSCRIPT_EVENTS = {"application.transcription_ready"}

# Liveness events never move a session out of these
TERMINAL_STATUSES = {STATUS_ENDED, STATUS_EXPIRED, STATUS_PERSONA_DRIFT}


@dataclass
class WebhookOutcome:
    duplicate: bool = False
    event_type: str = ""
    session_id: Optional[str] = None
    status: Optional[str] = None

    def to_response(self) -> dict:
        body = {"received": True}
        if self.duplicate:
            body["duplicate"] = True
        return body


def dedupe_key(raw_body: bytes, signature: Optional[str]) -> str:
    if signature:
        return f"sig:{signature}"
    return f"body:{hashlib.sha256(raw_body).hexdigest()}"


def sign(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(signature, sign(raw_body, secret))


def classify(event_type: str) -> str:
    """termination | liveness | transcript | analytics"""
    if event_type in TERMINATION_EVENTS:
        return "termination"
    if event_type in LIVENESS_EVENTS:
        return "liveness"
    if event_type in TRANSCRIPT_EVENTS:
        return "transcript"
    return "analytics"


def _explicit_session_id(event: dict) -> Optional[str]:
    properties = event.get("properties") if isinstance(event.get("properties"), dict) else {}
    for container in (event, properties):
        for key in ("session_id", "sessionId"):
            value = container.get(key)
            if isinstance(value, str) and value:
                return value
    return None


class WebhookProcessor:
    def __init__(
        self,
        store: SessionStore,
        cache: Cache,
        settings: Settings,
        flags: FeatureFlags,
        inspector: ContentInspector,
    ):
        self.store = store
        self.cache = cache
        self.settings = settings
        self.flags = flags
        self.inspector = inspector

    async def handle(
        self,
        raw_body: bytes,
        signature: Optional[str],
        request_id: str = "unknown",
    ) -> WebhookOutcome:
        # Forged deliveries must not claim a dedupe slot, so verify first
        secret = self.settings.tavus_webhook_secret.strip()
        if secret:
            logger.debug("Tavus webhook signature: %s", "present" if signature else "missing")
            if self.settings.tavus_webhook_verify and not verify_signature(raw_body, signature, secret):
                logger.warning("Tavus webhook signature verification failed requestId=%s", request_id)
                raise WebhookAuthError()

        key = dedupe_key(raw_body, signature)
        ttl_seconds = self.settings.webhook_dedupe_ttl_ms / 1000
        if not await self.cache.add(key, ttl_seconds):
            logger.info("Tavus webhook duplicate event ignored requestId=%s", request_id)
            return WebhookOutcome(duplicate=True)

        try:
            event = json.loads(raw_body or b"{}")
        except ValueError:
            logger.error("Tavus webhook body is not JSON requestId=%s: %r", request_id, raw_body[:300])
            return WebhookOutcome()
        if not isinstance(event, dict):
            logger.error("Tavus webhook body is not an object requestId=%s", request_id)
            return WebhookOutcome()

        try:
            return await self._apply(event, request_id)
        except Exception:
            # Tavus retries on 5xx; the retry must not look like a duplicate
            await self.cache.discard(key)
            raise

    async def _resolve_session(self, event: dict) -> Optional[SessionRecord]:
        conversation_id = event.get("conversation_id")
        session_id = _explicit_session_id(event)

        if session_id:
            session = await self.store.get(session_id)
            # A late event for a conversation this session already replaced
            if (
                session is not None
                and conversation_id
                and session.conversation_id
                and session.conversation_id != conversation_id
            ):
                logger.info(
                    "Webhook for stale conversation %s on session %s (current=%s)",
                    conversation_id, session_id[:8], session.conversation_id,
                )
                return None
            return session

        if isinstance(conversation_id, str) and conversation_id:
            return await self.store.get_by_conversation_id(conversation_id)
        return None

    async def _apply(self, event: dict, request_id: str) -> WebhookOutcome:
        event_type = str(event.get("event_type") or "")
        kind = classify(event_type)
        outcome = WebhookOutcome(event_type=event_type)

        if kind == "analytics":
            logger.info(
                "Tavus webhook %s conversation=%s (logged only)",
                event_type or "<untyped>", event.get("conversation_id"),
            )
            return outcome

        session = await self._resolve_session(event)
        if session is None:
            logger.warning(
                "Tavus webhook %s matched no session conversation=%s requestId=%s",
                event_type, event.get("conversation_id"), request_id,
            )
            return outcome
        outcome.session_id = session.id

        new_status = None
        if kind == "termination":
            if session.status != STATUS_PERSONA_DRIFT:
                new_status = STATUS_ENDED
        elif kind == "liveness":
            if session.status not in TERMINAL_STATUSES:
                new_status = STATUS_ACTIVE
        elif kind == "transcript":
            new_status = self._inspect(event, session)

        if new_status and new_status != session.status:
            await self.store.update(session.id, {"status": new_status})
            logger.info(
                "Session %s %s -> %s (%s)", session.id[:8], session.status, new_status, event_type
            )
        outcome.status = new_status or session.status
        return outcome

    def _inspect(self, event: dict, session: SessionRecord) -> Optional[str]:
        if not self.flags.enable_drift_scan:
            return None

        properties = event.get("properties") or {}
        transcript: Any = properties.get("transcript") if isinstance(properties, dict) else None
        if not isinstance(transcript, list):
            logger.info("transcription_ready without transcript for session %s", session.id[:8])
            return None

        result = self.inspector.inspect_transcript(transcript)
        if result.allowed:
            return None
        logger.warning(
            "Persona drift on session %s conversation=%s triggers=%s",
            session.id[:8], session.conversation_id, result.matched,
        )
        return STATUS_PERSONA_DRIFT
