"""
Tavus webhooks.

POST /api/webhook/conversation-ended: every conversation lifecycle callback

The raw body is read untouched: the HMAC and the dedupe hash are computed
over the exact bytes Tavus sent.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from ..core.dependencies import get_request_id, get_webhook_processor
from ..services.webhooks import WebhookProcessor

webhooks_router = APIRouter(tags=["webhooks"])


@webhooks_router.post("/webhook/conversation-ended")
async def conversation_webhook(
    request: Request,
    x_tavus_signature: Optional[str] = Header(default=None),
    processor: WebhookProcessor = Depends(get_webhook_processor),
    request_id: str = Depends(get_request_id),
):
    raw_body = await request.body()
    outcome = await processor.handle(raw_body, x_tavus_signature, request_id=request_id)
    return outcome.to_response()
