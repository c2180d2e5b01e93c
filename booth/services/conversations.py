"""
Conversation orchestration: turn a browser session id into a Tavus join URL.

Flow for POST /api/conversations:
  1. Resumable session (created/active, has URL + id, inside TTL) → reuse it.
  2. Live session past its TTL → mark expired.
  3. Resolve API key, booth app and persona/replica ids.
  4. Claim the session id (insert-if-absent / compare-and-set) so two tabs
     racing on the same id cannot both reach Tavus.
  5. Create the Tavus conversation, verify it, attach it to the session.

Tavus caps concurrent conversations per account, so reuse is not an
optimisation: a visitor who refreshes the page must get the same call back.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings, get_settings
from ..core.errors import (
    ConfigurationError,
    MissingIdentifierError,
    PersonaMismatchError,
    SessionBusyError,
)
from ..core.flags import FeatureFlags, get_flags
from ..models.base import utcnow
from .booth_apps import ConversationAppConfig, get_conversation_config, normalize_source
from .session_store import SessionRecord, SessionStore
from .tavus import TavusClient, TavusConversation

logger = logging.getLogger(__name__)

# ── Session statuses ──────────────────────────────────────────────────

STATUS_CREATING = "creating"
STATUS_CREATED = "created"
STATUS_ACTIVE = "active"
STATUS_ENDED = "ended"
STATUS_EXPIRED = "expired"
STATUS_PERSONA_DRIFT = "persona_drift"
STATUS_FAILED = "failed"

RESUMABLE_STATUSES = {STATUS_CREATED, STATUS_ACTIVE}

WEBHOOK_PATH = "/api/webhook/conversation-ended"


@dataclass
class ConversationRequest:
    session_id: str
    source: Optional[str] = None
    attendee_name: Optional[str] = None
    app_slug: Optional[str] = None
    persona_id: Optional[str] = None
    replica_id: Optional[str] = None
    document_ids: list[str] = field(default_factory=list)


@dataclass
class ConversationResult:
    session_id: str
    conversation_url: str
    conversation_id: str
    reused: bool = False


def is_past_ttl(session: SessionRecord, ttl: timedelta, now: datetime) -> bool:
    started = session.started_at
    return started is not None and now - started > ttl


def is_resumable(session: SessionRecord, ttl: timedelta, now: datetime) -> bool:
    return (
        session.status in RESUMABLE_STATUSES
        and bool(session.conversation_url)
        and bool(session.conversation_id)
        and not is_past_ttl(session, ttl, now)
    )


def build_conversation_name(label: str, session_id: str, source: str, attendee_name: Optional[str]) -> str:
    short_id = session_id[:8]
    if attendee_name:
        return f"{label} - {attendee_name} ({source}) [{short_id}]"
    return f"{label} ({source}) [{short_id}]"


def build_conversation_payload(
    *,
    persona_id: Optional[str],
    replica_id: Optional[str],
    conversation_name: str,
    duration_seconds: int,
    greeting: Optional[str],
    context: Optional[str],
    document_ids: list[str],
    document_strategy: str,
    callback_url: Optional[str],
) -> dict:
    """Request body for POST /v2/conversations."""
    payload: dict = {
        "conversation_name": conversation_name,
        "properties": {
            "max_call_duration": duration_seconds,
            "participant_left_timeout": 0,
            "participant_absent_timeout": 300,
            "enable_recording": False,
            "enable_transcription": True,
        },
    }
    if persona_id:
        payload["persona_id"] = persona_id
    if replica_id:
        payload["replica_id"] = replica_id
    if greeting:
        payload["custom_greeting"] = greeting
    if context:
        payload["conversational_context"] = context
    if document_ids:
        payload["document_ids"] = document_ids
        payload["document_retrieval_strategy"] = document_strategy
    if callback_url:
        payload["callback_url"] = callback_url
    return payload


class ConversationOrchestrator:
    def __init__(
        self,
        store: SessionStore,
        tavus: TavusClient,
        settings: Optional[Settings] = None,
        flags: Optional[FeatureFlags] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.tavus = tavus
        self.settings = settings or get_settings()
        self.flags = flags or get_flags()
        self.clock = clock

    @property
    def ttl(self) -> timedelta:
        return timedelta(milliseconds=self.settings.session_ttl_ms)

    @property
    def claim_timeout(self) -> timedelta:
        # A claim outliving two vendor timeouts belongs to a dead request
        return timedelta(seconds=self.settings.tavus_timeout_seconds * 2)

    async def start(
        self,
        req: ConversationRequest,
        db: Optional[AsyncSession] = None,
        callback_base_url: str = "",
        request_id: str = "unknown",
    ) -> ConversationResult:
        now = self.clock()
        source = normalize_source(req.source)
        short_id = req.session_id[:8]
        logger.info("tavus.create start session=%s source=%s requestId=%s", short_id, source, request_id)

        session = await self.store.get(req.session_id)

        # 1. Reuse
        if session is not None and is_resumable(session, self.ttl, now):
            logger.info("Reusing conversation %s for session=%s", session.conversation_id, short_id)
            return ConversationResult(
                session_id=session.id,
                conversation_url=session.conversation_url,
                conversation_id=session.conversation_id,
                reused=True,
            )

        # 2. Expire
        if session is not None and session.status in RESUMABLE_STATUSES and is_past_ttl(session, self.ttl, now):
            expired = await self.store.transition(
                session.id, session.status, {"status": STATUS_EXPIRED}
            )
            logger.info("Session %s expired (conversation=%s)", short_id, session.conversation_id)
            session = expired or await self.store.get(req.session_id)

        # 3. Resolve configuration before touching the session
        app_config = None
        if req.app_slug:
            if db is None:
                raise ConfigurationError("Booth app lookup needs a database session")
            app_config = await get_conversation_config(db, req.app_slug)
        payload, persona_id, replica_id = self._build_payload(
            req, source, app_config, callback_base_url
        )

        # 4. Claim
        claim_fields = {
            "status": STATUS_CREATING,
            "source": source,
            "app_id": app_config.id if app_config else None,
            "conversation_id": None,
            "conversation_url": None,
        }
        claimed = await self._claim(session, req.session_id, claim_fields, now)
        if claimed is None:
            logger.warning("Session %s create already in flight requestId=%s", short_id, request_id)
            raise SessionBusyError()

        # 5. Create + attach
        try:
            convo = await self.tavus.create_conversation(payload, request_id=request_id)
            self._verify_identity(convo, persona_id, replica_id, request_id)
        except Exception:
            await self.store.update(req.session_id, {"status": STATUS_FAILED})
            raise

        if convo.status and convo.status != STATUS_ACTIVE:
            logger.info("Tavus reported status=%s for %s", convo.status, convo.conversation_id)

        await self.store.update(
            req.session_id,
            {
                "conversation_id": convo.conversation_id,
                "conversation_url": convo.conversation_url,
                "status": STATUS_CREATED,
                "conversation_started_at": self.clock(),
            },
        )
        return ConversationResult(
            session_id=req.session_id,
            conversation_url=convo.conversation_url,
            conversation_id=convo.conversation_id,
            reused=False,
        )

    async def _claim(
        self, session: Optional[SessionRecord], session_id: str, fields: dict, now: datetime
    ) -> Optional[SessionRecord]:
        if session is None:
            claimed = await self.store.claim(session_id, fields)
            if claimed is not None:
                return claimed
            # Lost the insert race; only a stale claim may be taken over
            session = await self.store.get(session_id)
            if session is None:
                return None

        if session.status == STATUS_CREATING:
            claimed_at = session.updated_at or session.created_at
            if claimed_at is not None and now - claimed_at <= self.claim_timeout:
                return None
            logger.warning("Taking over abandoned claim on session %s", session_id[:8])

        return await self.store.transition(session_id, session.status, fields)

    def _build_payload(
        self,
        req: ConversationRequest,
        source: str,
        app_config: Optional[ConversationAppConfig],
        callback_base_url: str,
    ) -> tuple[dict, Optional[str], Optional[str]]:
        settings = self.settings

        if not settings.tavus_api_key.strip():
            raise ConfigurationError(
                "TAVUS_API_KEY is not configured. Please contact system administrator."
            )

        # A booth app fully owns its persona; request overrides only apply without one
        if app_config:
            persona_id = app_config.tavus_persona_id or None
            replica_id = app_config.tavus_replica_id or None
        else:
            persona_id = req.persona_id or settings.tavus_persona_id.strip() or None
            replica_id = req.replica_id or settings.tavus_replica_id.strip() or None

        if not persona_id and not replica_id:
            raise MissingIdentifierError(
                "App configuration missing Tavus replica or persona ID"
                if app_config
                else "Either personaId or replicaId must be provided, "
                     "or TAVUS_REPLICA_ID/TAVUS_PERSONA_ID must be configured"
            )

        label = app_config.label if app_config else settings.product_label
        duration = (
            app_config.conversation_duration_seconds
            if app_config and app_config.conversation_duration_seconds
            else settings.conversation_duration_seconds
        )
        greeting = (app_config.custom_greeting if app_config else None) or settings.custom_greeting
        context = (app_config.conversation_context if app_config else None) or settings.conversation_context
        document_ids = app_config.document_ids if app_config else req.document_ids
        strategy = (app_config.document_strategy if app_config else None) or settings.tavus_document_strategy

        callback_url = None
        if settings.tavus_webhook_secret.strip():
            base = (settings.public_base_url or callback_base_url).rstrip("/")
            if base:
                callback_url = f"{base}{WEBHOOK_PATH}"

        payload = build_conversation_payload(
            persona_id=persona_id,
            replica_id=replica_id,
            conversation_name=build_conversation_name(label, req.session_id, source, req.attendee_name),
            duration_seconds=duration,
            greeting=greeting,
            context=context,
            document_ids=document_ids or [],
            document_strategy=strategy,
            callback_url=callback_url,
        )
        return payload, persona_id, replica_id

    def _verify_identity(
        self,
        convo: TavusConversation,
        persona_id: Optional[str],
        replica_id: Optional[str],
        request_id: str,
    ) -> None:
        if not self.flags.verify_persona:
            return

        mismatches = []
        if persona_id and convo.persona_id and convo.persona_id != persona_id:
            mismatches.append(f"persona_id {convo.persona_id!r} != {persona_id!r}")
        if replica_id and convo.replica_id and convo.replica_id != replica_id:
            mismatches.append(f"replica_id {convo.replica_id!r} != {replica_id!r}")

        if mismatches:
            logger.error(
                "Tavus identity mismatch conversation=%s requestId=%s: %s",
                convo.conversation_id, request_id, "; ".join(mismatches),
            )
            raise PersonaMismatchError(
                "Tavus returned a different persona than requested",
                details={"conversationId": convo.conversation_id, "mismatches": mismatches},
            )
