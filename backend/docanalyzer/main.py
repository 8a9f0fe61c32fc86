"""
FastAPI Application — Entry Point

Document analysis API: single and batch analysis of PDF / PPTX / TXT files
with optional AI enrichment, persisted per user.

Architecture:
  - Analysis routes live under /api/ (see api/analysis.py)
  - Request user id comes from X-User-ID; RLS is set per transaction
  - Collaborators are FastAPI dependencies (api/dependencies.py)
  - Structured JSON error responses on all 4xx/5xx

Middleware stack (innermost → outermost):
  1. Request ID + access log — X-Request-ID header on every response
  2. CORS — restrict to configured origins
  3. Gzip — compress responses > 1 KB

Error mapping:
  ValidationError        400  (NO_FILE_UPLOADED, UNSUPPORTED_FILE_TYPE, ...)
  ExtractionError        422
  PersistenceError       503  DATABASE_ERROR (read endpoints only)
  CoordinatorError       500  BATCH_ANALYSIS_ERROR + batch_job_id
  RequestValidationError 422  VALIDATION_ERROR
  anything else          500  INTERNAL_ERROR
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from docanalyzer.api.analysis import router as analysis_router
from docanalyzer.core.config import settings
from docanalyzer.core.errors import (
    CoordinatorError,
    DocumentAnalyzerError,
    ExtractionError,
    PersistenceError,
    ValidationError,
)
from docanalyzer.db.session import check_db_health, dispose_engine
from docanalyzer.schemas.analysis import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

_STATUS_BY_ERROR: dict[type[DocumentAnalyzerError], int] = {
    ValidationError:  status.HTTP_400_BAD_REQUEST,
    ExtractionError:  status.HTTP_422_UNPROCESSABLE_ENTITY,
    PersistenceError: status.HTTP_503_SERVICE_UNAVAILABLE,
    CoordinatorError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


# ---------------------------------------------------------------------------
# Application lifespan — startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: log config summary and DB reachability.  An unreachable database
    does not stop the service; analyses are returned unsaved.
    Shutdown: dispose the connection pool.
    """
    logger.info(
        "Starting Document Analyzer | env=%s groq=%s chutes=%s ocr=%s",
        settings.app_env, settings.groq_configured, settings.chutes_configured, settings.ocr_enabled,
    )

    db_health = await check_db_health()
    if db_health["status"] != "ok":
        logger.warning("Database unavailable at startup, results will not be saved: %s", db_health)
    else:
        logger.info("Database: connected")

    yield

    logger.info("Shutting down Document Analyzer")
    await dispose_engine()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app() -> FastAPI:
    app = FastAPI(
        title="Document Analyzer",
        description=(
            "Statistics, linguistic features, OCR and optional AI analysis "
            "(sentiment, classification, summary, insights, recommendations, quality) "
            "for PDF, PPTX and TXT documents."
        ),
        version="1.0.0",
        docs_url="/api/docs" if not settings.is_production else None,
        redoc_url="/api/redoc" if not settings.is_production else None,
        openapi_url="/api/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order — last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(GZipMiddleware, minimum_size=1024)

    allowed_origins = ["*"] if settings.app_env == "development" else []
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=allowed_origins != ["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "X-Request-ID", "X-User-ID"],
        expose_headers=["X-Request-ID"],
    )

    # ----------------------------------------------------------------
    # Request ID + structured logging middleware
    # ----------------------------------------------------------------

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "HTTP %s %s %d %.1fms | user=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request.headers.get("X-User-ID", "-"),
        )
        return response

    # ----------------------------------------------------------------
    # Exception handlers — uniform structured error responses
    # ----------------------------------------------------------------

    def _request_id(request: Request) -> str:
        return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID") or str(uuid.uuid4())

    @app.exception_handler(DocumentAnalyzerError)
    async def analyzer_exception_handler(request: Request, exc: DocumentAnalyzerError):
        request_id = _request_id(request)
        status_code = next(
            (code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)),
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
        if status_code >= 500:
            logger.error("Request failed | path=%s code=%s request_id=%s: %s", request.url.path, exc.error_code, request_id, exc.message)
        else:
            logger.info("Request rejected | path=%s code=%s: %s", request.url.path, exc.error_code, exc.message)

        details = []
        if isinstance(exc, ValidationError):
            details.append(ErrorDetail(field=exc.field, message=exc.message, code=exc.error_code))
        body = ErrorResponse(
            error_code=exc.error_code,
            message=exc.message,
            details=details,
            request_id=request_id,
            batch_job_id=exc.batch_job_id if isinstance(exc, CoordinatorError) else None,
        )
        return JSONResponse(
            status_code=status_code,
            content=body.model_dump(mode="json"),
            headers={"X-Request-ID": request_id},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Convert Pydantic/FastAPI validation errors to structured ErrorResponse."""
        details = [
            ErrorDetail(
                field=" → ".join(str(loc) for loc in err["loc"]),
                message=err["msg"],
                code="VALIDATION_ERROR",
            )
            for err in exc.errors()
        ]
        body = ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Request validation failed.",
            details=details,
            request_id=_request_id(request),
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=body.model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all for unhandled exceptions — never expose stack traces."""
        request_id = _request_id(request)
        logger.exception(
            "Unhandled exception | path=%s request_id=%s",
            request.url.path, request_id,
        )
        body = ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="An unexpected error occurred.",
            request_id=request_id,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=body.model_dump(mode="json"),
            headers={"X-Request-ID": request_id},
        )

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    app.include_router(analysis_router, prefix="/api")

    # ----------------------------------------------------------------
    # Health & readiness endpoints (used by the load balancer)
    # ----------------------------------------------------------------

    @app.get(
        "/health",
        tags=["Operations"],
        summary="Liveness check",
        description="Returns 200 if the process is alive. No external checks.",
    )
    async def health() -> dict:
        return {"status": "ok", "service": "document-analyzer"}

    @app.get(
        "/ready",
        tags=["Operations"],
        summary="Readiness check",
        description="Returns 200 only if the database is reachable.",
    )
    async def readiness() -> JSONResponse:
        db_status = await check_db_health()
        if db_status["status"] != "ok":
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "database": db_status},
            )
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "ready", "database": db_status},
        )

    return app


# ---------------------------------------------------------------------------
# Application instance (imported by uvicorn)
# ---------------------------------------------------------------------------

app = create_app()


# ---------------------------------------------------------------------------
# Local development entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "docanalyzer.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.app_env == "development",
        log_level="debug" if settings.debug else "info",
        access_log=True,
    )
