"""
Sessions API.

GET /api/sessions/{session_id}: Session record (polled by the thank-you page)
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from ..core.dependencies import get_session_store_dep
from ..core.errors import NotFoundError
from ..services.session_store import SessionStore

sessions_router = APIRouter(tags=["sessions"])


class SessionOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    conversation_url: Optional[str] = Field(default=None, alias="conversationUrl")
    status: Optional[str] = None
    source: Optional[str] = None
    app_id: Optional[str] = Field(default=None, alias="appId")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")
    conversation_started_at: Optional[datetime] = Field(default=None, alias="conversationStartedAt")


@sessions_router.get("/sessions/{session_id}", response_model=SessionOut)
async def get_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store_dep),
):
    session = await store.get(session_id)
    if session is None:
        raise NotFoundError(error="Session not found")
    return SessionOut(**session.to_dict())
