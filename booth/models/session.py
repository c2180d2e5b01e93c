"""
Visitor conversation sessions.

The primary key is generated by the browser before it ever calls us, so there
is no default. One row per visitor attempt; the Tavus conversation attached to
it can be replaced when the previous one expires.
"""

from datetime import datetime

from sqlalchemy import String, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from .base import TimestampBase


class ConversationSession(TimestampBase):
    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    conversation_id: Mapped[str] = mapped_column(String, nullable=True, index=True)
    conversation_url: Mapped[str] = mapped_column(Text, nullable=True)
    # created | active | ended | expired | persona_drift | creating | failed
    status: Mapped[str] = mapped_column(String, nullable=True)
    source: Mapped[str] = mapped_column(String, nullable=True)  # nfc, qr, link, direct
    app_id: Mapped[str] = mapped_column(String, nullable=True, index=True)
    # When the current Tavus conversation was attached. TTL runs from here.
    conversation_started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
