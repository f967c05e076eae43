"""FastAPI application entry point.

Run with:
    uvicorn src.main:app --port 8000
"""

import logging
import traceback
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.dependencies import AutomationContext
from src.automation.exceptions import (
    AutofillError,
    FormNotFoundError,
    InvalidStateTransitionError,
    InvalidURLError,
    JobNotFoundError,
    NavigationError,
    PoolFailureError,
    TemplateNotFoundError,
)
from src.automation.execution_engine import build_engine
from src.automation.template_repository import get_template_repository, set_template_repository
from src.browser_service.pool import init_browser_pool, shutdown_browser_pool
from src.config import settings

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    # Startup
    logger.info("Starting autofill engine...")
    pool = await init_browser_pool()
    repository = get_template_repository()
    engine = build_engine(pool, repository, settings)
    await engine.start()
    context = AutomationContext(engine, repository, pool=pool)
    app.state.automation = context
    logger.info(f"Autofill engine started ({settings.app_env.value})")
    yield
    # Shutdown
    logger.info("Shutting down autofill engine...")
    app.state.automation = None
    await context.sessions.cancel_all()
    await engine.close()
    await shutdown_browser_pool()
    set_template_repository(None)
    logger.info("Autofill engine stopped")


app = FastAPI(
    title="Autofill Engine API",
    description="Form detection and profile-driven form filling",
    version="0.1.0",
    lifespan=lifespan,
)


# ============================================================================
# Exception Handlers
# ============================================================================

ERROR_STATUS_CODES: list[tuple[type[AutofillError], int]] = [
    (JobNotFoundError, 404),
    (TemplateNotFoundError, 404),
    (FormNotFoundError, 404),
    (InvalidStateTransitionError, 409),
    (InvalidURLError, 422),
    (NavigationError, 502),
    (PoolFailureError, 503),
]


@app.exception_handler(AutofillError)
async def autofill_exception_handler(request: Request, exc: AutofillError):
    """Map domain errors to HTTP status codes."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES if isinstance(exc, error_type)),
        500,
    )
    if status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log and handle all unhandled exceptions."""
    logger.error(f"Unhandled error: {type(exc).__name__}: {exc}")
    logger.error(traceback.format_exc())
    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal server error: {type(exc).__name__}: {str(exc)}"},
    )


# CORS middleware
_dev_origins = [
    "http://localhost:3000",
    "http://localhost:8000",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:8000",
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_dev_origins if settings.is_development else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Autofill Engine API",
        "version": "0.1.0",
        "status": "running",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    automation: AutomationContext | None = getattr(app.state, "automation", None)
    pool_health = None
    if automation is not None and automation.pool is not None:
        pool_status = automation.pool.status()
        pool_health = {"browsers": len(pool_status.browsers), "available": pool_status.available}
    return {
        "status": "ok",
        "environment": settings.app_env.value,
        "pool": pool_health,
    }


# Import and include routers
from src.api.routes import forms, sessions, system, templates  # noqa: E402

app.include_router(forms.router, prefix="/api/forms", tags=["forms"])
app.include_router(sessions.router, prefix="/api/sessions", tags=["sessions"])
app.include_router(templates.router, prefix="/api/templates", tags=["templates"])
app.include_router(system.router, prefix="/api/system", tags=["system"])
