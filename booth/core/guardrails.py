"""
Guardrails: transcript inspection for persona drift.

The booth persona must stay on script. After a call, Tavus delivers the
transcript and we look for markers that only show up when the model leaked
its instructions or wandered off topic. It is a substring heuristic, nothing
more, so a hit flags the session for review instead of blocking anything.

Triggers come from GUARDRAIL_TRIGGERS (comma separated). When unset, the
default list below applies.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .config import get_settings

logger = logging.getLogger(__name__)

# ── Default triggers ──────────────────────────────────────────────────
#
# System prompt leakage: phrases from our conversational_context or the
# generic "as an AI" disclaimers that mean the persona broke character.

DEFAULT_TRIGGERS = (
    "conversational context",
    "my instructions",
    "system prompt",
    "i was instructed",
    "as an ai language model",
    "i am not allowed to discuss",
)

# Only the persona's own turns are inspected; visitors can say anything.
INSPECTED_ROLES = {"assistant", "replica"}


@dataclass
class GuardrailResult:
    """Result of a guardrail check."""
    allowed: bool
    reason: Optional[str] = None
    matched: list[str] = field(default_factory=list)


class ContentInspector:
    """Case-insensitive substring matcher over a fixed trigger list."""

    def __init__(self, triggers: Iterable[str]):
        self.triggers = tuple(t.strip().lower() for t in triggers if t and t.strip())

    def inspect(self, text: str) -> GuardrailResult:
        lowered = (text or "").lower()
        matched = [t for t in self.triggers if t in lowered]
        if matched:
            return GuardrailResult(
                allowed=False,
                reason=f"Transcript matched {len(matched)} guardrail trigger(s)",
                matched=matched,
            )
        return GuardrailResult(allowed=True)

    def inspect_transcript(self, transcript: list) -> GuardrailResult:
        """
        Inspect persona turns of a Tavus transcript:
            [{"role": "assistant", "content": "..."}, {"role": "user", ...}]
        Plain strings are inspected as-is.
        """
        parts = []
        for turn in transcript or []:
            if isinstance(turn, str):
                parts.append(turn)
            elif isinstance(turn, dict):
                role = str(turn.get("role", "")).lower()
                if role in INSPECTED_ROLES:
                    parts.append(str(turn.get("content") or ""))
        return self.inspect("\n".join(parts))


def get_inspector() -> ContentInspector:
    settings = get_settings()
    configured = [t for t in settings.guardrail_triggers.split(",") if t.strip()]
    return ContentInspector(configured or DEFAULT_TRIGGERS)
