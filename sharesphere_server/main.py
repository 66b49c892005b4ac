# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""ShareSphere Server - Main FastAPI application."""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sharesphere_server.auth import NotAuthenticated
from sharesphere_server.config import settings
from sharesphere_server.database import close_db, init_db
from sharesphere_server.routers import auth, oauth, verification
from sharesphere_server.session_store import create_session_store

logger = logging.getLogger(__name__)


def _get_cors_origins() -> list[str]:
    """Frontend and backend origins plus any extras, without trailing slashes."""
    raw = [settings.frontend_url, settings.backend_url, *settings.cors_origins.split(",")]
    origins: list[str] = []
    for origin in raw:
        origin = origin.strip().rstrip("/")
        if origin and origin not in origins:
            origins.append(origin)
    return origins


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    await init_db()
    # Chosen once; requests never see the store change underneath them
    app.state.session_store = await create_session_store(settings.redis_url)
    if settings.token_secret == "change-me-in-production" and settings.is_production:
        logger.warning("Default signing secret in production - set JWT_SECRET or SESSION_SECRET")
    yield
    await app.state.session_store.close()
    await close_db()


app = FastAPI(
    title="ShareSphere Server",
    description="Authentication and session API for the ShareSphere student marketplace",
    version="2.0.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    expose_headers=["set-cookie"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method, path, status, and duration for each request (no body or auth headers)."""
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code, duration_ms)
    return response


@app.exception_handler(NotAuthenticated)
async def not_authenticated_handler(request: Request, exc: NotAuthenticated) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"authSuccess": False, "error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(auth.router)
app.include_router(oauth.router)
app.include_router(verification.router)


@app.get("/")
async def root():
    """Health check / API info."""
    return {
        "status": "ok",
        "message": "ShareSphere API is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/health")
async def health():
    """Health check for load balancers."""
    return {"status": "ok"}
