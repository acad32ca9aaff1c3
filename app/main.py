"""
Main FastAPI application for the LaTeX compilation service.
Handles CORS, request logging and body-size middleware, lifespan events, and
router registration.
"""
import errno
import logging
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List

from fastapi import FastAPI, Request, status
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import close_db, init_db
from app.middleware import BodySizeLimitMiddleware
from app.routers import compilation, documents, health
from app.routers.compilation import SOURCE_REQUIRED, error_response
from app.services.latex_compiler import configure_miktex, latex_compiler
from app.services.workspace import workspace

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"
QUIET_PATHS = ("/health", "/")


# ---------------------------------------------------------------------------
# Startup / shutdown helpers
# ---------------------------------------------------------------------------

async def _check_database() -> bool:
    """
    Initialise the document store.  Returns True on success.

    The compile endpoints do not need the database, so a failure here is
    logged and the service keeps running.
    """
    try:
        await init_db()
        logger.info("✓ Database connection OK")
        return True
    except Exception as exc:
        logger.warning("⚠ Database unavailable (%s) — /documents endpoints will fail", exc)
        return False


async def _check_engine() -> bool:
    """Log whether the typesetting engine answers.  Never raises."""
    engine_status = await latex_compiler.check_available()
    if engine_status.available:
        logger.info("✓ %s available: %s", engine_status.engine, engine_status.version)
    else:
        logger.warning(
            "⚠ %s not available (%s) — install TeX Live or MiKTeX and make sure it is on PATH",
            engine_status.engine,
            engine_status.error,
        )
    return engine_status.available


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown event handler."""
    logger.info("=" * 60)
    logger.info("  Starting LaTeX compilation service …")
    logger.info("=" * 60)

    # 1 — Temp directory (required)
    root = await workspace.ensure_root()
    logger.info("✓ Temp directory: %s", root.resolve())

    # 2 — MiKTeX update checks (Windows only)
    await configure_miktex()

    # 3 — Leftovers from previous runs, then hourly sweeps
    await workspace.cleanup_stale()
    workspace.start_periodic_cleanup()

    # 4 — Engine and database (optional; log warnings but continue)
    await _check_engine()
    await _check_database()

    logger.info("=" * 60)
    logger.info("  LaTeX compilation API ready on http://%s:%d", settings.HOST, settings.LATEX_API_PORT)
    logger.info("  Health check: http://%s:%d/health", settings.HOST, settings.LATEX_API_PORT)
    logger.info("=" * 60)

    yield  # ← server is running

    logger.info("Shutting down LaTeX compilation service …")
    await workspace.stop_periodic_cleanup()
    await close_db()
    logger.info("✓ Shutdown complete.")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="LaTeX Compilation API",
    description=(
        "Compiles LaTeX documents to PDF with `pdflatex`.\n\n"
        "Key endpoints:\n"
        "- `POST /compile` — compile raw LaTeX source, returns base64 PDF\n"
        "- `GET  /health` — check the typesetting engine is reachable\n"
        "- `/documents` — saved LaTeX documents per user\n"
    ),
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request body limit
# ---------------------------------------------------------------------------

# Counts streamed bytes too, so chunked uploads cannot slip past the limit
app.add_middleware(BodySizeLimitMiddleware)


# ---------------------------------------------------------------------------
# Request / response logging middleware
# ---------------------------------------------------------------------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with method, path, status code, and elapsed time.
    Attaches an ``X-Process-Time`` header (milliseconds) to every response.
    """
    t0 = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - t0) * 1000, 2)

    # Skip health-check polling
    if request.url.path not in QUIET_PATHS:
        logger.info(
            "%s %s → %d  (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )

    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    return response


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

def _compile_validation_message(errors: List[Dict[str, Any]]) -> str:
    """Turn pydantic errors on a compile body into the single message clients expect."""
    for err in errors:
        loc = err.get("loc") or ()
        field = loc[-1] if loc else None
        if field in ("engine", "documentId"):
            return f"Invalid {field}: {err.get('msg')}"
    return SOURCE_REQUIRED


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    ``POST /compile`` answers bad bodies with ``{success: false, error}`` and 400;
    every other route keeps FastAPI's default 422.
    """
    if request.url.path == "/compile":
        return error_response(_compile_validation_message(exc.errors()), status.HTTP_400_BAD_REQUEST)
    return await request_validation_exception_handler(request, exc)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return a structured JSON error for any unhandled exception."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": str(exc) or "Internal server error",
            "path": str(request.url.path),
            "timestamp": datetime.utcnow().isoformat(),
        },
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(compilation.router,                        tags=["Compile"])
app.include_router(health.router,    prefix="/health",    tags=["Health"])
app.include_router(documents.router, prefix="/documents", tags=["Documents"])


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    """API root — returns basic service info."""
    return {
        "name": "LaTeX Compilation API",
        "version": VERSION,
        "engine": settings.LATEX_ENGINE,
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "compile": "/compile",
            "documents": "/documents",
        },
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    try:
        uvicorn.run(
            "app.main:app",
            host=settings.HOST,
            port=settings.LATEX_API_PORT,
            log_level="info",
        )
    except OSError as exc:
        if exc.errno == errno.EADDRINUSE:
            logger.error(
                "Port %d is already in use. Stop the other process or set LATEX_API_PORT to a free port.",
                settings.LATEX_API_PORT,
            )
            sys.exit(1)
        raise
