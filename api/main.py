"""
api/main.py -- FastAPI application entry point for TeamGate.

Exposes the membership and authorization core over HTTP. The services do all
of the work; routes only translate between pydantic models and service calls.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins

Lifespan opens the Database (creating tables and running migrations), wires
the services into app.state, and disposes the engine on shutdown.

Error envelope: every error response is {"error": {"code", "message",
"detail"?, "metadata"?}}. TeamGateError subclasses map to their own status
codes. InternalError never carries internal detail unless DEBUG is on.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.invitations import router as invitations_router
from api.routes.v1.teams import router as teams_router
from audit.recorder import AuditRecorder
from auth.service import AccountService
from auth.signup import BootstrapSignup
from auth.tokens import PasswordHasher, TokenIssuer
from core.config import Settings, get_settings
from core.errors import InternalError, TeamGateError
from invitations.service import InvitationService
from store.db import Database
from teams.service import MembershipService

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("teamgate.api")


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def init_state(app: FastAPI, db: Database, settings: Optional[Settings] = None) -> None:
    """Build every service around one Database and attach them to app.state.

    Separate from lifespan so tests can wire an isolated database into the
    real app without running the production startup.
    """
    settings = settings or get_settings()
    hasher = PasswordHasher.from_settings(settings)
    issuer = TokenIssuer.from_settings(settings)
    audit = AuditRecorder(db)
    signup = BootstrapSignup(db, hasher, audit)

    app.state.settings = settings
    app.state.db = db
    app.state.audit = audit
    app.state.signup = signup
    app.state.accounts = AccountService(db, hasher, issuer, audit)
    app.state.memberships = MembershipService(db, audit)
    app.state.invitations = InvitationService(db, signup, issuer, audit, settings=settings)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the database and wire services on startup; dispose on shutdown."""
    logger.info("TeamGate API starting up")
    settings = get_settings()
    db = Database(settings.database_url)
    init_state(app, db, settings)
    logger.info("Database initialized (%s)", db.engine.dialect.name)

    yield

    db.close()
    logger.info("TeamGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="TeamGate API",
    description="Accounts, teams, memberships, and invitations for a multi-tenant platform.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["localhost", "127.0.0.1", "*.localhost", "testserver"],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(teams_router, prefix="/api/v1", tags=["Teams"])
app.include_router(invitations_router, prefix="/api/v1", tags=["Invitations"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _debug_enabled(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None) or get_settings()
    return settings.debug


@app.exception_handler(TeamGateError)
async def teamgate_error_handler(request: Request, exc: TeamGateError) -> JSONResponse:
    """Render a service error with its own status code.

    For InternalError the chained cause is shown as detail in debug mode
    only; it has already been logged with a traceback by the service.
    """
    detail = None
    if isinstance(exc, InternalError) and exc.__cause__ is not None and _debug_enabled(request):
        detail = f"{type(exc.__cause__).__name__}: {exc.__cause__}"
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=exc.code,
                message=exc.message,
                detail=detail,
                metadata=exc.metadata or None,
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Structured envelope for framework-raised HTTP errors (404 route, 405 method)."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(exclude_none=True),
    )


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, database reachability, and current version."""
    db: Database = request.app.state.db
    return HealthResponse(database="ok" if db.ping() else "unavailable", version=VERSION)
