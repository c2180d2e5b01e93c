"""
Load booth apps from a JSON file.

    python -m booth.seed apps.json

The file holds a list of apps keyed by slug; existing slugs are updated in
place. Knowledge documents are listed by their Tavus document id:

    [{"slug": "acme-expo", "company_name": "Acme", "tavus_persona_id": "p1",
      "lead_capture_enabled": true, "documents": ["d-123", "d-456"]}]
"""

import asyncio
import json
import logging
import sys

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .core.database import close_db, get_session_factory, init_db
from .models.booth_app import AppDocument, BoothApp, KnowledgeDocument

logger = logging.getLogger(__name__)

APP_FIELDS = {
    column.key for column in BoothApp.__table__.columns
} - {"id", "created_at", "updated_at"}


async def _get_document(db: AsyncSession, tavus_document_id: str) -> KnowledgeDocument:
    result = await db.execute(
        select(KnowledgeDocument).where(KnowledgeDocument.tavus_document_id == tavus_document_id)
    )
    document = result.scalar_one_or_none()
    if document is None:
        document = KnowledgeDocument(tavus_document_id=tavus_document_id, name=tavus_document_id)
        db.add(document)
        await db.flush()
    return document


async def seed_apps(db: AsyncSession, apps: list[dict]) -> list[BoothApp]:
    seeded = []
    for entry in apps:
        unknown = set(entry) - APP_FIELDS - {"documents"}
        if unknown:
            raise ValueError(f"Unknown booth app fields for {entry.get('slug')!r}: {sorted(unknown)}")

        # _get_document flushes, so resolve documents before the app is touched
        documents = None
        if "documents" in entry:
            documents = [await _get_document(db, doc_id) for doc_id in entry["documents"]]

        result = await db.execute(select(BoothApp).where(BoothApp.slug == entry["slug"]))
        app = result.scalar_one_or_none()
        if app is None:
            app = BoothApp(slug=entry["slug"], documents=[])
            db.add(app)
            logger.info("Creating booth app %s", entry["slug"])
        else:
            logger.info("Updating booth app %s", entry["slug"])
            if documents is not None:
                # Replacing a collection needs it loaded; no implicit IO under asyncio
                await db.refresh(app, ["documents"])

        for key, value in entry.items():
            if key in APP_FIELDS:
                setattr(app, key, value)

        if documents is not None:
            app.documents = [AppDocument(document=document) for document in documents]

        seeded.append(app)

    await db.flush()
    return seeded


async def run_seed(path: str) -> None:
    with open(path, encoding="utf-8") as f:
        apps = json.load(f)

    await init_db()
    factory = get_session_factory()
    async with factory() as db:
        seeded = await seed_apps(db, apps)
        await db.commit()
    await close_db()
    logger.info("Seeded %d booth app(s)", len(seeded))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    if len(sys.argv) != 2:
        sys.exit("usage: python -m booth.seed <apps.json>")
    asyncio.run(run_seed(sys.argv[1]))
