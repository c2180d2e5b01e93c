"""
Session persistence: in-memory map OR `sessions` table.
Controlled by FF_USE_DATABASE_SESSIONS flag.

Both backends expose the same async interface. Besides plain CRUD there are
two atomic primitives used to reserve a session id before calling Tavus:

  claim(id, fields)                       insert only if the id is new
  transition(id, expected_status, fields) compare-and-set on status

The in-memory store gets atomicity for free (no await between check and
write on a single event loop). The SQL store relies on the primary key and a
conditional UPDATE.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict, replace
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update as sql_update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.flags import get_flags
from ..models.base import as_utc, utcnow
from ..models.session import ConversationSession

logger = logging.getLogger(__name__)

# Fields callers may set through create/update/claim/transition
MUTABLE_FIELDS = {
    "conversation_id",
    "conversation_url",
    "status",
    "source",
    "app_id",
    "conversation_started_at",
}


@dataclass
class SessionRecord:
    id: str
    conversation_id: Optional[str] = None
    conversation_url: Optional[str] = None
    status: Optional[str] = None
    source: Optional[str] = None
    app_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    conversation_started_at: Optional[datetime] = None

    @property
    def started_at(self) -> Optional[datetime]:
        """TTL anchor: the current conversation's start, else row creation."""
        return self.conversation_started_at or self.created_at

    def to_dict(self) -> dict:
        return asdict(self)


def _check_fields(fields: dict) -> dict:
    unknown = set(fields) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown session fields: {sorted(unknown)}")
    return fields


class SessionStore(ABC):
    @abstractmethod
    async def get(self, session_id: str) -> Optional[SessionRecord]:
        ...

    @abstractmethod
    async def get_by_conversation_id(self, conversation_id: str) -> Optional[SessionRecord]:
        ...

    @abstractmethod
    async def create(self, session_id: str, fields: dict) -> SessionRecord:
        """Create (or replace) a session. created_at is set now."""
        ...

    @abstractmethod
    async def update(self, session_id: str, fields: dict) -> Optional[SessionRecord]:
        """Apply the given fields. Returns None when the session does not exist."""
        ...

    @abstractmethod
    async def claim(self, session_id: str, fields: dict) -> Optional[SessionRecord]:
        """Insert only if absent. Returns None when the id already exists."""
        ...

    @abstractmethod
    async def transition(
        self, session_id: str, expected_status: Optional[str], fields: dict
    ) -> Optional[SessionRecord]:
        """Apply fields only if the stored status equals expected_status."""
        ...


# ── In-memory ─────────────────────────────────────────────────────────

class MemorySessionStore(SessionStore):
    def __init__(self):
        self._sessions: dict[str, SessionRecord] = {}

    async def get(self, session_id: str) -> Optional[SessionRecord]:
        return self._sessions.get(session_id)

    async def get_by_conversation_id(self, conversation_id: str) -> Optional[SessionRecord]:
        for session in self._sessions.values():
            if session.conversation_id == conversation_id:
                return session
        return None

    async def create(self, session_id: str, fields: dict) -> SessionRecord:
        now = utcnow()
        record = SessionRecord(
            id=session_id, created_at=now, updated_at=now, **_check_fields(fields)
        )
        self._sessions[session_id] = record
        return record

    async def update(self, session_id: str, fields: dict) -> Optional[SessionRecord]:
        existing = self._sessions.get(session_id)
        if existing is None:
            return None
        updated = replace(existing, updated_at=utcnow(), **_check_fields(fields))
        self._sessions[session_id] = updated
        return updated

    async def claim(self, session_id: str, fields: dict) -> Optional[SessionRecord]:
        if session_id in self._sessions:
            return None
        return await self.create(session_id, fields)

    async def transition(
        self, session_id: str, expected_status: Optional[str], fields: dict
    ) -> Optional[SessionRecord]:
        existing = self._sessions.get(session_id)
        if existing is None or existing.status != expected_status:
            return None
        return await self.update(session_id, fields)


# ── SQL ───────────────────────────────────────────────────────────────

def _to_record(row: ConversationSession) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        conversation_id=row.conversation_id,
        conversation_url=row.conversation_url,
        status=row.status,
        source=row.source,
        app_id=row.app_id,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
        conversation_started_at=as_utc(row.conversation_started_at),
    )


class SqlSessionStore(SessionStore):
    """
    Each call runs in its own short transaction so a claim is visible to
    other requests as soon as it returns.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._factory = session_factory

    async def get(self, session_id: str) -> Optional[SessionRecord]:
        async with self._factory() as db:
            row = await db.get(ConversationSession, session_id)
            return _to_record(row) if row else None

    async def get_by_conversation_id(self, conversation_id: str) -> Optional[SessionRecord]:
        async with self._factory() as db:
            result = await db.execute(
                select(ConversationSession)
                .where(ConversationSession.conversation_id == conversation_id)
                .order_by(ConversationSession.updated_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _to_record(row) if row else None

    async def create(self, session_id: str, fields: dict) -> SessionRecord:
        now = utcnow()
        async with self._factory() as db:
            row = await db.merge(
                ConversationSession(
                    id=session_id, created_at=now, updated_at=now, **_check_fields(fields)
                )
            )
            await db.commit()
            return _to_record(row)

    async def update(self, session_id: str, fields: dict) -> Optional[SessionRecord]:
        _check_fields(fields)
        async with self._factory() as db:
            row = await db.get(ConversationSession, session_id)
            if row is None:
                return None
            for key, value in fields.items():
                setattr(row, key, value)
            row.updated_at = utcnow()
            await db.commit()
            return _to_record(row)

    async def claim(self, session_id: str, fields: dict) -> Optional[SessionRecord]:
        now = utcnow()
        async with self._factory() as db:
            row = ConversationSession(
                id=session_id, created_at=now, updated_at=now, **_check_fields(fields)
            )
            db.add(row)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.info("Session %s already claimed", session_id[:8])
                return None
            return _to_record(row)

    async def transition(
        self, session_id: str, expected_status: Optional[str], fields: dict
    ) -> Optional[SessionRecord]:
        _check_fields(fields)
        if expected_status is None:
            status_matches = ConversationSession.status.is_(None)
        else:
            status_matches = ConversationSession.status == expected_status

        async with self._factory() as db:
            result = await db.execute(
                sql_update(ConversationSession)
                .where(ConversationSession.id == session_id, status_matches)
                .values(updated_at=utcnow(), **fields)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            if result.rowcount != 1:
                return None

        return await self.get(session_id)


_memory_store: Optional[MemorySessionStore] = None


def get_session_store() -> SessionStore:
    """Return the active session store based on feature flags."""
    global _memory_store
    if get_flags().use_database_sessions:
        from ..core.database import get_session_factory

        return SqlSessionStore(get_session_factory())
    if _memory_store is None:
        _memory_store = MemorySessionStore()
    return _memory_store


def reset_memory_store() -> None:
    """Drop every in-memory session. Used on shutdown and by tests."""
    global _memory_store
    _memory_store = None
