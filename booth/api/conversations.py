"""
Conversations API.

POST /api/conversations: Start (or resume) the Tavus call for a session
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import get_db, get_orchestrator, get_request_id
from ..core.ratelimit import rate_limit
from ..services.conversations import ConversationOrchestrator, ConversationRequest

logger = logging.getLogger(__name__)

conversations_router = APIRouter(tags=["conversations"])


def _blank_to_none(value):
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class CreateConversationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1, max_length=128)
    app_slug: Optional[str] = Field(default=None, alias="appSlug", max_length=64)
    persona_id: Optional[str] = Field(default=None, alias="personaId")
    replica_id: Optional[str] = Field(default=None, alias="replicaId")
    document_ids: Optional[list[str]] = Field(default=None, alias="documentIds")
    attendee_name: Optional[str] = Field(default=None, alias="attendeeName", max_length=200)
    source: Optional[str] = None

    @field_validator("session_id")
    @classmethod
    def _strip_session_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("sessionId must not be blank")
        return v

    @field_validator("app_slug", "persona_id", "replica_id", "attendee_name", "source", mode="before")
    @classmethod
    def _strip_optional(cls, v):
        return _blank_to_none(v)


class ConversationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    conversation_url: str = Field(alias="conversationUrl")
    conversation_id: str = Field(alias="conversationId")
    reused: bool = False


@conversations_router.post(
    "/conversations",
    response_model=ConversationResponse,
    dependencies=[Depends(rate_limit("public-conversation", "conversation_rate_limit"))],
)
async def create_conversation(
    body: CreateConversationRequest,
    request: Request,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
    db: AsyncSession = Depends(get_db),
    request_id: str = Depends(get_request_id),
):
    """Return a join URL for this session, reusing a live conversation when there is one."""
    result = await orchestrator.start(
        ConversationRequest(
            session_id=body.session_id,
            source=body.source,
            attendee_name=body.attendee_name,
            app_slug=body.app_slug,
            persona_id=body.persona_id,
            replica_id=body.replica_id,
            document_ids=body.document_ids or [],
        ),
        db=db,
        callback_base_url=str(request.base_url),
        request_id=request_id,
    )

    return ConversationResponse(
        session_id=result.session_id,
        conversation_url=result.conversation_url,
        conversation_id=result.conversation_id,
        reused=result.reused,
    )
