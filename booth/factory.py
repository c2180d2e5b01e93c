"""
FastAPI application factory.
"""

import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.cache import close_cache
from .core.config import get_settings
from .core.database import init_db, close_db
from .core.errors import BoothError
from .api.router import router

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Booth Conversations",
        description="Lead-gen booth backend for Tavus AI video conversations",
        version="1.0.0",
        docs_url="/docs" if settings.env == "development" else None,
        redoc_url="/redoc" if settings.env == "development" else None,
    )

    # ── CORS ─────────────────────────────────────────────────────
    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["x-request-id", "Retry-After", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
    )

    # ── Request id + access log ──────────────────────────────────
    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        response = await call_next(request)

        response.headers["x-request-id"] = request_id
        if request.url.path.startswith("/api"):
            logger.info(
                "%s %s %d in %dms requestId=%s",
                request.method, request.url.path, response.status_code,
                (time.perf_counter() - start) * 1000, request_id,
            )
        return response

    # ── Errors ───────────────────────────────────────────────────
    @app.exception_handler(BoothError)
    async def booth_error_handler(request: Request, exc: BoothError):
        request_id = getattr(request.state, "request_id", "unknown")
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "%s %s failed requestId=%s status=%d error=%s message=%s code=%s",
            request.method, request.url.path, request_id, exc.status_code,
            exc.error, exc.message, exc.code,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        request_id = getattr(request.state, "request_id", "unknown")
        logger.warning(
            "%s %s invalid request requestId=%s errors=%d",
            request.method, request.url.path, request_id, len(exc.errors()),
        )
        details = [
            {"loc": list(e.get("loc", ())), "msg": e.get("msg", ""), "type": e.get("type", "")}
            for e in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request data", "details": details},
        )

    # ── Startup ──────────────────────────────────────────────────
    @app.on_event("startup")
    async def on_startup():
        logging.basicConfig(
            level=getattr(logging, settings.log_level.upper(), logging.INFO),
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
        logger.info("Starting Booth Conversations (env=%s)", settings.env)

        # Create database tables
        await init_db()

        from .core.flags import get_flags
        flags = get_flags()
        logger.info(
            "Flags: db_sessions=%s redis=%s verify_persona=%s drift_scan=%s",
            flags.use_database_sessions, flags.use_redis,
            flags.verify_persona, flags.enable_drift_scan,
        )

        if not settings.tavus_api_key.strip():
            logger.warning("TAVUS_API_KEY is not configured. Conversations will fail.")
        if not settings.tavus_replica_id.strip() and not settings.tavus_persona_id.strip():
            logger.warning(
                "TAVUS_REPLICA_ID/TAVUS_PERSONA_ID are not configured. "
                "Clients must provide replicaId or personaId, or use a booth app."
            )
        if settings.tavus_webhook_verify and not settings.tavus_webhook_secret.strip():
            logger.warning("TAVUS_WEBHOOK_VERIFY is on but TAVUS_WEBHOOK_SECRET is empty; signatures are not checked.")

        logger.info("Booth Conversations is ready")

    # ── Shutdown ─────────────────────────────────────────────────
    @app.on_event("shutdown")
    async def on_shutdown():
        from .services.tavus import close_client
        from .services.session_store import reset_memory_store
        await close_client()
        await close_cache()
        await close_db()
        reset_memory_store()
        logger.info("Booth Conversations shut down")

    # ── Routes ───────────────────────────────────────────────────
    app.include_router(router)

    return app
