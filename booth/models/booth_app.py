"""
Booth apps: one branded landing page + persona setup per event/product.
Addressed publicly by slug (/a/{slug}).
"""

from sqlalchemy import String, Text, Integer, Boolean, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import TimestampBase, new_uuid


class BoothApp(TimestampBase):
    __tablename__ = "booth_apps"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_uuid)
    slug: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Branding
    company_name: Mapped[str] = mapped_column(String, nullable=True)
    company_url: Mapped[str] = mapped_column(String, nullable=True)
    logo_url: Mapped[str] = mapped_column(String, nullable=True)
    primary_color: Mapped[str] = mapped_column(String, nullable=True)
    secondary_color: Mapped[str] = mapped_column(String, nullable=True)
    background_color: Mapped[str] = mapped_column(String, nullable=True)
    foreground_color: Mapped[str] = mapped_column(String, nullable=True)
    scheduling_url: Mapped[str] = mapped_column(String, nullable=True)
    product_label: Mapped[str] = mapped_column(String, nullable=True)

    # Conversation setup (never exposed publicly)
    conversation_duration_seconds: Mapped[int] = mapped_column(Integer, nullable=True)
    conversation_context: Mapped[str] = mapped_column(Text, nullable=True)
    custom_greeting: Mapped[str] = mapped_column(Text, nullable=True)
    document_strategy: Mapped[str] = mapped_column(String, nullable=True)
    tavus_replica_id: Mapped[str] = mapped_column(String, nullable=True)
    tavus_persona_id: Mapped[str] = mapped_column(String, nullable=True)

    lead_capture_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    documents: Mapped[list["AppDocument"]] = relationship(
        back_populates="app",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class KnowledgeDocument(TimestampBase):
    """A document already uploaded to Tavus' knowledge base."""

    __tablename__ = "knowledge_documents"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_uuid)
    name: Mapped[str] = mapped_column(String, nullable=True)
    tavus_document_id: Mapped[str] = mapped_column(String, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class AppDocument(TimestampBase):
    __tablename__ = "app_documents"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_uuid)
    app_id: Mapped[str] = mapped_column(
        String, ForeignKey("booth_apps.id", ondelete="CASCADE"), nullable=False, index=True
    )
    document_id: Mapped[str] = mapped_column(
        String, ForeignKey("knowledge_documents.id", ondelete="CASCADE"), nullable=False
    )
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    app: Mapped["BoothApp"] = relationship(back_populates="documents")
    document: Mapped["KnowledgeDocument"] = relationship(lazy="selectin")
