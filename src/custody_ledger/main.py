"""
Custody Ledger - FastAPI Application Entry Point.

Chain-of-custody evidence records with a Merkle integrity ledger.
"""

import json
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api import cases_router, evidence_router, verify_router
from .config import get_settings
from .exceptions import (
    CaseNotFoundError,
    CheckpointConflictError,
    CheckpointRefusedError,
    EvidenceNotFoundError,
    IntegrityCheckError,
)
from .storage import get_db, init_database


# ============================================================================
# JSON LOGGING SETUP
# ============================================================================

class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    EXTRA_FIELDS = (
        "endpoint", "method", "status_code", "action", "error",
        "case_id", "evidence_id",
    )

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key in self.EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        return json.dumps(log_data, default=str)


def setup_json_logging(level: str = "INFO") -> logging.Logger:
    """Configure JSON logging for the service."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(JSONFormatter())
    root_logger.addHandler(console_handler)

    logging.getLogger("custody_ledger").setLevel(level)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    return logging.getLogger("custody_ledger")


logger = logging.getLogger("custody_ledger")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    setup_json_logging(settings.log_level)
    logger.info("🔍 Starting Custody Ledger...")

    await init_database()
    logger.info("Database initialized successfully")

    logger.info(f"Blob store at {settings.blob_dir}")
    logger.info("Custody Ledger ready!")

    yield

    logger.info("Shutting down Custody Ledger...")
    await get_db().close()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Custody Ledger",
    description="""
# Chain-of-Custody Evidence Ledger

- 📁 **Cases & Evidence**: content-addressed file storage with custody history
- 🔐 **Merkle Ledger**: every case checkpoints a root over its evidence metadata
- 🚨 **Tamper Detection**: content vs. record tampering, localized per item

## Getting Started

1. Open a case via `POST /cases`
2. Add evidence via `POST /evidence`
3. Check the case via `GET /cases/{case_id}/integrity`
4. Verify a file via `POST /verify/evidence/{evidence_id}`
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(cases_router)
app.include_router(evidence_router)
app.include_router(verify_router)


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint with API information."""
    settings = get_settings()
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
        "endpoints": {
            "cases": "/cases",
            "evidence": "/evidence",
            "verify": "/verify",
        },
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint."""
    logger.info("🏥 Health check requested", extra={"action": "health_check"})

    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }


@app.exception_handler(CaseNotFoundError)
@app.exception_handler(EvidenceNotFoundError)
async def not_found_handler(request: Request, exc: LookupError):
    return JSONResponse(status_code=404, content={"error": "Not found", "detail": str(exc)})


@app.exception_handler(CheckpointConflictError)
async def checkpoint_conflict_handler(request: Request, exc: CheckpointConflictError):
    return JSONResponse(
        status_code=409,
        content={"error": "Checkpoint conflict", "detail": str(exc)},
    )


@app.exception_handler(CheckpointRefusedError)
async def checkpoint_refused_handler(request: Request, exc: CheckpointRefusedError):
    logger.warning(f"🚨 {exc}", extra={"case_id": exc.case_id, "action": "checkpoint"})
    return JSONResponse(
        status_code=409,
        content={
            "error": "Checkpoint refused",
            "detail": str(exc),
            "state": exc.state,
            "tampered_items": sorted(exc.tampered_items),
        },
    )


@app.exception_handler(IntegrityCheckError)
async def integrity_unavailable_handler(request: Request, exc: IntegrityCheckError):
    """Could not check: never reported as a tamper verdict."""
    logger.error(
        f"❌ Unable to verify: {exc}",
        extra={"endpoint": request.url.path, "error": type(exc).__name__},
    )
    return JSONResponse(
        status_code=503,
        content={"error": "Unable to verify", "detail": str(exc)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"❌ Unhandled error on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc),
        },
    )


def main():
    """Run the application with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "custody_ledger.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
