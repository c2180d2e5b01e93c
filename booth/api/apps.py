"""
Public booth endpoints (no auth, rate limited).

GET  /api/public/apps/{slug}  Branding + share links for the landing page
POST /api/public/leads        Capture a lead from the landing page form
"""

import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, Path, Request
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import get_db
from ..core.ratelimit import rate_limit
from ..services.booth_apps import capture_lead, get_public_config

logger = logging.getLogger(__name__)

apps_router = APIRouter(prefix="/public", tags=["public"])

# Deliberately loose; the CRM does the real validation
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class LeadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    app_slug: str = Field(alias="appSlug", min_length=1, max_length=64)
    name: Optional[str] = Field(default=None, max_length=200)
    email: Optional[str] = Field(default=None, max_length=320)
    phone: Optional[str] = Field(default=None, max_length=64)
    source: Optional[str] = None

    @field_validator("app_slug", mode="before")
    @classmethod
    def _strip_slug(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("name", "email", "phone", "source", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if not isinstance(v, str):
            return None
        v = v.strip()
        return v or None

    @field_validator("email")
    @classmethod
    def _check_email(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not EMAIL_RE.match(v):
            raise ValueError("Invalid email address")
        return v


@apps_router.get(
    "/apps/{slug}",
    dependencies=[Depends(rate_limit("public-app", "app_config_rate_limit"))],
)
async def public_app_config(
    request: Request,
    slug: str = Path(min_length=1, max_length=64),
    db: AsyncSession = Depends(get_db),
):
    return await get_public_config(db, slug.strip(), base_url=str(request.base_url))


@apps_router.post(
    "/leads",
    dependencies=[Depends(rate_limit("public-lead", "lead_rate_limit"))],
)
async def create_lead(
    body: LeadRequest,
    db: AsyncSession = Depends(get_db),
):
    await capture_lead(
        db,
        app_slug=body.app_slug,
        name=body.name,
        email=body.email,
        phone=body.phone,
        source=body.source,
    )
    return {"ok": True}
