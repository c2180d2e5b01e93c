"""
Tavus v2 API client.

Creates AI video conversations. Tavus hosts the call itself (Daily room);
we only hand the browser the join URL.

Docs: https://docs.tavus.io
API:  https://tavusapi.com/v2/conversations
"""

import json
import logging
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ValidationError

from ..core.config import get_settings
from ..core.errors import (
    ConfigurationError,
    InvalidVendorResponseError,
    VendorError,
    VendorTimeoutError,
)

logger = logging.getLogger(__name__)

MAX_CONCURRENT_MARKER = "maximum concurrent conversations"
MAX_CONCURRENT_CODE = "TAVUS_MAX_CONCURRENT"


class TavusConversation(BaseModel):
    """
    The only response shape we accept from POST /v2/conversations:

        {"conversation_id": "c123", "conversation_url": "https://tavus.daily.co/c123",
         "status": "active", "persona_id": "p1", "replica_id": "r1", ...}

    Extra keys are ignored. Anything else is an invalid response.
    """

    conversation_id: str
    conversation_url: str
    status: Optional[str] = None
    persona_id: Optional[str] = None
    replica_id: Optional[str] = None
    conversation_name: Optional[str] = None


def parse_conversation(body: Any) -> TavusConversation:
    try:
        convo = TavusConversation.model_validate(body)
    except ValidationError as e:
        logger.error("Tavus response failed validation: %s payload=%s", e.errors(), body)
        raise InvalidVendorResponseError(
            "Missing conversation_url or conversation_id in response"
        )
    if not convo.conversation_id or not convo.conversation_url:
        logger.error("Tavus response has empty id/url payload=%s", body)
        raise InvalidVendorResponseError(
            "Missing conversation_url or conversation_id in response"
        )
    return convo


def _error_details(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return text


class TavusClient:
    def __init__(self, api_key: str, base_url: str, timeout: float):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=min(self._timeout, 10)),
            )
        return self._client

    async def aclose(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    async def create_conversation(self, payload: dict, request_id: str = "unknown") -> TavusConversation:
        """
        Create a conversation.

        Raises:
            ConfigurationError         no API key
            VendorTimeoutError         connect/read timeout or transport failure
            VendorError                non-2xx (code=TAVUS_MAX_CONCURRENT on the cap)
            InvalidVendorResponseError 2xx but not a TavusConversation
        """
        if not self.api_key:
            raise ConfigurationError(
                "TAVUS_API_KEY is not configured. Please contact system administrator."
            )

        url = f"{self.base_url}/v2/conversations"
        client = self._get_client()

        try:
            resp = await client.post(url, json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            logger.error("tavus.create timeout requestId=%s: %s", request_id, e)
            raise VendorTimeoutError("Tavus did not respond in time, please retry")
        except httpx.TransportError as e:
            logger.error("tavus.create transport error requestId=%s: %s", request_id, e)
            raise VendorTimeoutError(
                "Could not reach Tavus, please retry", status_code=502, error="Tavus unreachable"
            )

        if not resp.is_success:
            text = resp.text
            snippet = f"{text[:300]}..." if len(text) > 300 else text
            logger.error(
                "tavus.create failed requestId=%s status=%d message=%s",
                request_id, resp.status_code, snippet,
            )
            code = MAX_CONCURRENT_CODE if MAX_CONCURRENT_MARKER in text.lower() else None
            raise VendorError(
                status_code=resp.status_code,
                code=code,
                details=_error_details(text),
            )

        try:
            body = resp.json()
        except ValueError:
            logger.error("Tavus returned non-JSON body requestId=%s: %s", request_id, resp.text[:500])
            raise InvalidVendorResponseError("Tavus response was not JSON")

        convo = parse_conversation(body)
        logger.info("tavus.create ok status=%d id=%s", resp.status_code, convo.conversation_id)
        return convo


_tavus: Optional[TavusClient] = None


def get_tavus_client() -> TavusClient:
    global _tavus
    if _tavus is None:
        settings = get_settings()
        _tavus = TavusClient(
            api_key=settings.tavus_api_key.strip(),
            base_url=settings.tavus_base_url,
            timeout=settings.tavus_timeout_seconds,
        )
    return _tavus


async def close_client():
    global _tavus
    if _tavus is not None:
        await _tavus.aclose()
        _tavus = None
