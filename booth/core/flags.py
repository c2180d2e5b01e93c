"""
Central feature flags. One file controls every swappable backend.

Set via environment variables (prefix FF_) or .env file.
When a flag is OFF, the system uses a local fallback. Nothing crashes.
"""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeatureFlags(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Session store ────────────────────────────────────────────────
    use_database_sessions: bool = Field(default=False, alias="FF_USE_DATABASE_SESSIONS")
    # ON  → Sessions persisted in the `sessions` table. Survive restarts.
    # OFF → Process-local dict. Fine for a single booth laptop / demo.

    # ── Cache (rate limiter + webhook dedupe) ────────────────────────
    use_redis: bool = Field(default=False, alias="FF_USE_REDIS")
    # ON  → Counters and dedupe keys shared through Redis. Needs REDIS_URL.
    # OFF → In-process TTL map. Each worker counts on its own.

    # ── Vendor checks ────────────────────────────────────────────────
    verify_persona: bool = Field(default=True, alias="FF_VERIFY_PERSONA")
    # ON  → Tavus must echo the persona/replica we asked for, else 500.
    # OFF → Whatever Tavus returns is trusted.

    enable_drift_scan: bool = Field(default=True, alias="FF_ENABLE_DRIFT_SCAN")
    # ON  → transcription_ready webhooks are scanned for guardrail triggers.
    # OFF → Transcripts are logged only.


@lru_cache
def get_flags() -> FeatureFlags:
    return FeatureFlags()
