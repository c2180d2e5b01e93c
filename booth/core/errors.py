"""
Error taxonomy. Every failure the API can report is a BoothError subclass.

The exception handler in factory.py turns these into JSON:
    {"error": ..., "message": ..., "code": ..., "details": ...}
"""

from typing import Any, Optional


class BoothError(Exception):
    status_code: int = 500
    error: str = "Internal server error"
    code: Optional[str] = None

    def __init__(
        self,
        message: str = "",
        *,
        status_code: Optional[int] = None,
        error: Optional[str] = None,
        code: Optional[str] = None,
        details: Any = None,
        headers: Optional[dict[str, str]] = None,
    ):
        super().__init__(message or self.error)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error is not None:
            self.error = error
        if code is not None:
            self.code = code
        self.details = details
        self.headers = headers or {}

    def to_dict(self) -> dict:
        body: dict[str, Any] = {"error": self.error}
        if self.message:
            body["message"] = self.message
        if self.code:
            body["code"] = self.code
        if self.details is not None:
            body["details"] = self.details
        return body


# ── Configuration ────────────────────────────────────────────────────

class ConfigurationError(BoothError):
    """Operator-actionable. Missing API key is 500, missing persona is 400."""
    status_code = 500
    error = "Server configuration error"


class MissingIdentifierError(ConfigurationError):
    status_code = 400
    error = "Missing required identifier"


# ── Lookup ───────────────────────────────────────────────────────────

class NotFoundError(BoothError):
    status_code = 404
    error = "Not found"


class LeadCaptureDisabledError(BoothError):
    status_code = 403
    error = "Lead capture disabled"


# ── Vendor ───────────────────────────────────────────────────────────

class VendorError(BoothError):
    """Non-2xx from Tavus. status_code is the vendor's status."""
    error = "Failed to create Tavus conversation"


class VendorTimeoutError(VendorError):
    """Tavus did not answer in time. Safe for the client to retry."""
    status_code = 504
    error = "Tavus request timed out"
    code = "TAVUS_TIMEOUT"


class InvalidVendorResponseError(BoothError):
    status_code = 500
    error = "Invalid Tavus API response"


class PersonaMismatchError(BoothError):
    status_code = 500
    error = "Persona mismatch"
    code = "PERSONA_MISMATCH"


# ── Sessions ─────────────────────────────────────────────────────────

class SessionBusyError(BoothError):
    status_code = 409
    error = "Conversation is already being created for this session"
    code = "SESSION_CREATE_IN_PROGRESS"


# ── Abuse / auth ─────────────────────────────────────────────────────

class RateLimitError(BoothError):
    status_code = 429
    error = "Too many requests"


class WebhookAuthError(BoothError):
    status_code = 401
    error = "Invalid signature"
