"""
Booth app lookup and lead capture.

A booth app is addressed by slug. Disabled apps behave exactly like missing
ones so a stale QR code never leaks a half-configured page.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.errors import LeadCaptureDisabledError, NotFoundError
from ..models.booth_app import BoothApp
from ..models.lead import Lead

logger = logging.getLogger(__name__)

VALID_SOURCES = ("nfc", "qr", "link", "direct")


def normalize_source(source: Optional[str]) -> str:
    """Traffic attribution tag. Unknown or empty → direct."""
    normalized = source.strip().lower() if source else "direct"
    return normalized if normalized in VALID_SOURCES else "direct"


@dataclass
class ConversationAppConfig:
    """What the orchestrator needs from a booth app."""
    id: str
    slug: str
    label: str
    conversation_context: Optional[str] = None
    custom_greeting: Optional[str] = None
    conversation_duration_seconds: Optional[int] = None
    document_strategy: Optional[str] = None
    tavus_replica_id: Optional[str] = None
    tavus_persona_id: Optional[str] = None
    document_ids: list[str] = field(default_factory=list)


async def _load_app(db: AsyncSession, slug: str) -> Optional[BoothApp]:
    result = await db.execute(
        select(BoothApp).where(BoothApp.slug == slug, BoothApp.enabled == True)  # noqa: E712
    )
    return result.scalar_one_or_none()


async def get_conversation_config(db: AsyncSession, slug: str) -> ConversationAppConfig:
    app = await _load_app(db, slug)
    if app is None:
        raise NotFoundError(error="App not found")

    document_ids = [
        link.document.tavus_document_id
        for link in app.documents
        if link.enabled
        and link.document is not None
        and link.document.enabled
        and link.document.tavus_document_id
    ]

    duration = app.conversation_duration_seconds
    return ConversationAppConfig(
        id=app.id,
        slug=app.slug,
        label=app.product_label or app.company_name or app.slug,
        conversation_context=app.conversation_context,
        custom_greeting=app.custom_greeting,
        conversation_duration_seconds=duration if duration and duration > 0 else None,
        document_strategy=app.document_strategy,
        tavus_replica_id=app.tavus_replica_id,
        tavus_persona_id=app.tavus_persona_id,
        document_ids=document_ids,
    )


def share_links(slug: str, base_url: str) -> dict[str, str]:
    """Landing URLs printed on the NFC tag, the QR code and shared by link."""
    base = base_url.rstrip("/")
    return {
        source: f"{base}/a/{slug}?source={source}"
        for source in ("nfc", "qr", "link")
    }


async def get_public_config(db: AsyncSession, slug: str, base_url: str = "") -> dict:
    """Branding for the landing page. No persona, prompt or greeting."""
    app = await _load_app(db, slug)
    if app is None:
        raise NotFoundError(error="App not found")

    settings = get_settings()
    return {
        "id": app.id,
        "slug": app.slug,
        "companyName": app.company_name,
        "companyUrl": app.company_url,
        "logoUrl": app.logo_url,
        "primaryColor": app.primary_color,
        "secondaryColor": app.secondary_color,
        "backgroundColor": app.background_color,
        "foregroundColor": app.foreground_color,
        "schedulingUrl": app.scheduling_url,
        "productLabel": app.product_label,
        "conversationDurationSeconds": app.conversation_duration_seconds,
        "leadCaptureEnabled": bool(app.lead_capture_enabled),
        "links": share_links(app.slug, settings.public_base_url or base_url),
    }


async def capture_lead(
    db: AsyncSession,
    app_slug: str,
    name: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    source: Optional[str] = None,
) -> Lead:
    app = await _load_app(db, app_slug)
    if app is None:
        raise NotFoundError(error="App not found")
    if not app.lead_capture_enabled:
        raise LeadCaptureDisabledError()

    lead = Lead(
        app_id=app.id,
        name=name,
        email=email,
        phone=phone,
        source=normalize_source(source),
    )
    db.add(lead)
    await db.flush()
    logger.info("Lead captured app=%s source=%s", app.slug, lead.source)
    return lead
