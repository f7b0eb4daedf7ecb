"""
FastAPI Application Entry Point

This module builds the FastAPI application and configures:
- API routes
- Middleware (logging, CORS)
- Error mapping from the service exception hierarchy to JSON responses
- Startup/shutdown of the application context (schema, event pipeline)

Design Decisions:
- App factory: create_app(settings) builds an independent app with its own
  AppContext, which is what tests use; `app` is the default instance for
  uvicorn (uvicorn shortlink.main:app)
- One exception handler for every ShortLinkError, so endpoints stay thin and
  error kinds are stable across the whole API
"""

import logging
import math
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from shortlink.api import endpoints
from shortlink.core.context import AppContext
from shortlink.core.exceptions import RateLimitedError, ShortLinkError, TransientError
from shortlink.core.rate_limit import limiter
from shortlink.core.setting import Settings, get_settings
from shortlink.middleware.logging import add_logging_middleware

logger = logging.getLogger(__name__)

# Seconds suggested to clients after a transient storage failure
TRANSIENT_RETRY_AFTER = 1


async def handle_service_error(request: Request, exc: ShortLinkError) -> JSONResponse:
    """Map a service exception to {error, message, retry_after?}."""
    body = {"error": exc.kind, "message": exc.message}
    headers = {}

    if isinstance(exc, RateLimitedError):
        retry_after = max(1, math.ceil(exc.retry_after))
        body["retry_after"] = retry_after
        headers["Retry-After"] = str(retry_after)
    elif isinstance(exc, TransientError):
        body["retry_after"] = TRANSIENT_RETRY_AFTER
        headers["Retry-After"] = str(TRANSIENT_RETRY_AFTER)
        logger.warning(f"{request.method} {request.url.path} failed transiently: {exc.message}")
    elif exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")

    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


def create_app(settings: Optional[Settings] = None, context: Optional[AppContext] = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Configuration; defaults to the environment-loaded settings
        context: Pre-built context (tests inject one with a fake clock)
    """
    settings = settings or get_settings()
    context = context or AppContext.build(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await context.startup()
        try:
            yield
        finally:
            await context.shutdown()

    app = FastAPI(
        title="Short-Link Service",
        description=(
            "Short links with lifecycle management, resolution analytics and "
            "rate-limited sensitive operations. Statistics are best-effort."
        ),
        version="1.0.0",
        docs_url="/docs",  # Swagger UI documentation
        redoc_url="/redoc",  # ReDoc documentation
        lifespan=lifespan,
    )
    app.state.context = context

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(ShortLinkError, handle_service_error)

    add_logging_middleware(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health endpoints defined before router to match before catch-all route
    @app.get("/", tags=["Health"])
    async def root():
        return {
            "message": "Short-Link Service",
            "version": "1.0.0",
            "docs": "/docs"
        }

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Liveness plus event pipeline counters (drops show up here first)."""
        return {
            "status": "healthy",
            "service": settings.SERVICE_NAME,
            "database": context.adapter.get_dialect_name(),
            "pipeline": context.pipeline.stats(),
        }

    app.include_router(endpoints.router, tags=["Short Links"])

    return app


logging.basicConfig(
    level=get_settings().LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()
