from __future__ import annotations

import logging
import time
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy.engine import make_url

from .api import events, health, ingestion, insights, timeline
from .config import Settings, get_settings
from .database import init_db
from .events import lifespan
from .telemetry import setup_telemetry

DEV_ORIGINS = ("http://localhost:3000", "http://localhost:5173", "http://127.0.0.1:3000")


def configure_logging(settings: Settings) -> None:
    """JSON logs through stdlib logging; request ids ride along via contextvars."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
    )


def _allowed_origins(settings: Settings) -> list[str]:
    extra = [origin.strip() for origin in (settings.cors_origins or "").split(",") if origin.strip()]
    return [*DEV_ORIGINS, *extra]


def create_app(settings: Settings) -> FastAPI:
    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    request_logger = structlog.get_logger("chronologicon.requests")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def tag_request(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        structlog.contextvars.bind_contextvars(request_id=request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        request_logger.debug(
            "request served",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
            request_id=request_id,
        )
        return response

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit_default])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    @app.get("/", response_class=PlainTextResponse, include_in_schema=False)
    def root() -> str:
        return f"{settings.app_name} is running!"

    app.include_router(health.router)
    app.include_router(ingestion.router, prefix="/api/events", tags=["Ingestion"])
    app.include_router(events.router, prefix="/api/events", tags=["Events"])
    app.include_router(timeline.router, prefix="/api/events", tags=["Timeline"])
    app.include_router(insights.router, prefix="/api/events", tags=["Insights"])
    return app


settings = get_settings()
configure_logging(settings)
setup_telemetry(settings)
app = create_app(settings)

# Tables exist before the first request even when the lifespan is not run.
init_db()
structlog.get_logger().info(
    "Application configured",
    database_url=make_url(settings.database_url).render_as_string(hide_password=True),
)
