"""
kudos.api.main — FastAPI application entry point
=================================================

Run with::

    uvicorn kudos.api.main:app --reload --port 8000

or ``python -m kudos``.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from kudos import __version__  # noqa: E402
from kudos.api.deps import get_service  # noqa: E402
from kudos.api.routes.actions import router as actions_router  # noqa: E402
from kudos.api.routes.public import router as public_router  # noqa: E402
from kudos.database.engine import run_db  # noqa: E402
from kudos.errors import (  # noqa: E402
    CatalogError,
    DailyLimitExceeded,
    InvalidActionRequest,
    InvariantViolation,
    KudosError,
    ServiceUnavailable,
    UnknownActionType,
)

logger = logging.getLogger(__name__)

# Most specific first; the first isinstance match wins
ERROR_STATUS: tuple[tuple[type[KudosError], int], ...] = (
    (UnknownActionType, 422),
    (InvalidActionRequest, 422),
    (DailyLimitExceeded, 429),
    (ServiceUnavailable, 503),
    (InvariantViolation, 500),
    (CatalogError, 500),
)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


def status_for(exc: KudosError) -> int:
    for exc_type, status_code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status_code
    return 400


async def kudos_error_handler(request: Request, exc: KudosError) -> JSONResponse:
    """Serialize engine errors as ``{"error", "message", "details"}``."""
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={
            "error": type(exc).__name__,
            "message": exc.message,
            "details": exc.details,
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — build the service, reload leaderboards."""
    service = get_service()
    await run_db(service.rebuild_leaderboards)
    logger.info(
        "Kudos API started — catalog %s, timezone %s",
        service.catalog.version, service.config.timezone,
    )
    yield
    logger.info("Kudos API shutting down")


app = FastAPI(
    title="Kudos Engagement API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(KudosError, kudos_error_handler)

# Mount routers
app.include_router(actions_router, prefix="/api")
app.include_router(public_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
