"""
Document Analysis API Router

  POST /api/analyze            one file   (field "document")
  POST /api/batch-analyze      1..10 files (field "documents")
  GET  /api/analysis-history   persisted documents, flat history shape
  GET  /api/batch-jobs         the caller's batch jobs, newest first
  GET  /api/batch-jobs/{id}    one job with its per-file rows
  GET  /api/ai/status          reachability of both AI providers

Request lifecycle (analyze / batch-analyze):
  ┌──────────────────────────────────────────────────────────────┐
  │ 1. Parse form options → AnalysisOptions (400 on bad values)  │
  │ 2. Validate every upload: extension, size, count (400)       │
  │ 3. Spool uploads to settings.upload_tmp_dir                  │
  │ 4. BatchJobCoordinator: analyze → persist → record           │
  │ 5. Remove spooled files, always                              │
  └──────────────────────────────────────────────────────────────┘

A database failure never fails an analysis request: the response carries
database_saved=false and a database_error instead.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from docanalyzer.api.dependencies import Coordinator, Gateway, UserId
from docanalyzer.core.config import settings
from docanalyzer.core.errors import ExtractionError, ValidationError
from docanalyzer.processing.extractor import normalize_extension
from docanalyzer.schemas.analysis import (
    ALLOWED_EXTENSIONS,
    AnalysisOptions,
    AnalyzeData,
    AnalyzeResponse,
    BatchAnalyzeData,
    BatchAnalyzeResponse,
    ErrorResponse,
    HistoryResponse,
)
from docanalyzer.services.worker import SourceFile

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Document Analysis"])

_DB_WARNING = "Analysis completed but could not be saved to the database"
_TRUE_VALUES = frozenset({"true", "1", "yes", "on"})


# ---------------------------------------------------------------------------
# Form options
# ---------------------------------------------------------------------------

async def analysis_options(
    use_ai:           Annotated[str, Form(alias="useAI")] = "false",
    strategy:         Annotated[str, Form()] = "auto",
    priority:         Annotated[str, Form()] = "balanced",
    temperature:      Annotated[Optional[str], Form()] = None,
    max_tokens:       Annotated[Optional[str], Form(alias="maxTokens")] = None,
    ocr_confidence:   Annotated[Optional[str], Form(alias="ocrConfidence")] = None,
    document_type:    Annotated[str, Form(alias="documentType")] = "general",
    ai_analysis_type: Annotated[str, Form(alias="aiAnalysisType")] = "balanced",
) -> AnalysisOptions:
    """Multipart fields → AnalysisOptions; bad numbers or ranges are a 400."""
    values: dict = {
        "useAI":          use_ai.strip().lower() in _TRUE_VALUES,
        "strategy":       strategy,
        "priority":       priority,
        "documentType":   document_type,
        "aiAnalysisType": ai_analysis_type,
    }
    numeric = (("temperature", temperature, float), ("maxTokens", max_tokens, int), ("ocrConfidence", ocr_confidence, int))
    for name, raw, cast in numeric:
        if raw is None or not raw.strip():
            continue
        try:
            values[name] = cast(raw)
        except ValueError:
            raise ValidationError(f"{name} must be a number, got {raw!r}", error_code="INVALID_OPTIONS", field=name) from None

    try:
        return AnalysisOptions.model_validate(values)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = str(first["loc"][0]) if first["loc"] else None
        raise ValidationError(f"{field}: {first['msg']}", error_code="INVALID_OPTIONS", field=field) from None


Options = Annotated[AnalysisOptions, Depends(analysis_options)]


# ---------------------------------------------------------------------------
# Upload validation / spooling
# ---------------------------------------------------------------------------

def _validate_extension(upload: UploadFile) -> str:
    ext = normalize_extension(upload.filename or "")
    if ext not in ALLOWED_EXTENSIONS:
        raise ValidationError(
            f"Unsupported file type '{ext}' for {upload.filename}. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
            error_code="UNSUPPORTED_FILE_TYPE",
            field=upload.filename,
        )
    return ext


async def _spool(upload: UploadFile) -> SourceFile:
    """Write one validated upload to the temp dir; raises FILE_TOO_LARGE."""
    ext = _validate_extension(upload)
    data = await upload.read()
    if len(data) > settings.max_upload_bytes:
        raise ValidationError(
            f"{upload.filename} is {len(data)} bytes; the limit is {settings.max_upload_bytes}",
            error_code="FILE_TOO_LARGE",
            field=upload.filename,
        )

    tmp_dir = Path(settings.upload_tmp_dir)
    path = tmp_dir / f"{uuid.uuid4().hex}{ext}"
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, _write_file, tmp_dir, path, data)
    return SourceFile(path=str(path), filename=upload.filename or path.name, file_type=ext, size=len(data))


def _write_file(tmp_dir: Path, path: Path, data: bytes) -> None:
    tmp_dir.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def _cleanup(sources: list[SourceFile]) -> None:
    for source in sources:
        try:
            Path(source.path).unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Upload cleanup failed | path=%s: %s", source.path, exc)


async def _spool_all(uploads: list[UploadFile]) -> list[SourceFile]:
    # validate every extension first so nothing is written for a rejected request
    for upload in uploads:
        _validate_extension(upload)
    sources: list[SourceFile] = []
    try:
        for upload in uploads:
            sources.append(await _spool(upload))
    except BaseException:
        _cleanup(sources)
        raise
    return sources


# ---------------------------------------------------------------------------
# POST /analyze
# ---------------------------------------------------------------------------

@router.post(
    "/analyze",
    response_model=AnalyzeResponse,
    summary="Analyze one document",
    responses={
        400: {"model": ErrorResponse, "description": "No file, unsupported type, too large or bad options"},
        422: {"model": ErrorResponse, "description": "File could not be parsed"},
    },
)
async def analyze_document(
    options:     Options,
    user_id:     UserId,
    coordinator: Coordinator,
    document:    Annotated[Optional[UploadFile], File(description="PDF, PPTX or TXT, max 50 MB")] = None,
) -> AnalyzeResponse:
    if document is None or not document.filename:
        raise ValidationError("No file was uploaded", error_code="NO_FILE_UPLOADED", field="document")

    sources = await _spool_all([document])
    try:
        single = await coordinator.analyze_single(sources[0], options, user_id)
    finally:
        _cleanup(sources)

    outcome = single.outcome
    if not outcome.succeeded:
        raise ExtractionError(outcome.error or "Analysis failed", error_code=outcome.error_code)

    result = outcome.result
    report = single.report
    saved = single.database_saved
    return AnalyzeResponse(
        data=AnalyzeData(
            filename=result.filename,
            fileType=result.file_type,
            analysis=result.analysis_payload(),
            options=options.model_dump(by_alias=True),
            processing_time_ms=result.processing_time_ms,
            database_saved=saved,
            document_id=report.document_id if report else None,
            analysis_id=report.analysis_id if report else None,
        ),
        database_error=report.error if report else None,
        warning=None if saved else _DB_WARNING,
    )


# ---------------------------------------------------------------------------
# POST /batch-analyze
# ---------------------------------------------------------------------------

@router.post(
    "/batch-analyze",
    response_model=BatchAnalyzeResponse,
    summary="Analyze up to 10 documents as one batch job",
    responses={
        400: {"model": ErrorResponse, "description": "No files, too many, unsupported type or bad options"},
        500: {"model": ErrorResponse, "description": "Batch job could not be created"},
    },
)
async def batch_analyze(
    options:         Options,
    user_id:         UserId,
    coordinator:     Coordinator,
    documents:       Annotated[Optional[list[UploadFile]], File(description="1-10 files")] = None,
    job_name:        Annotated[Optional[str], Form(alias="jobName")] = None,
    job_description: Annotated[Optional[str], Form(alias="jobDescription")] = None,
) -> BatchAnalyzeResponse:
    uploads = [d for d in (documents or []) if d.filename]
    if not uploads:
        raise ValidationError("No files were uploaded", error_code="NO_FILES_UPLOADED", field="documents")
    if len(uploads) > settings.max_batch_files:
        raise ValidationError(
            f"{len(uploads)} files uploaded; the limit is {settings.max_batch_files}",
            error_code="TOO_MANY_FILES",
            field="documents",
        )

    sources = await _spool_all(uploads)
    try:
        batch = await coordinator.run_batch(sources, options, user_id, job_name, job_description)
    finally:
        _cleanup(sources)

    return BatchAnalyzeResponse(
        data=BatchAnalyzeData(
            totalFiles=batch.counters.total,
            successful=batch.counters.successful,
            failed=batch.counters.failed,
            results=batch.results,
            totalProcessingTime=batch.total_processing_time_ms,
            database_saved=batch.database_saved,
            batch_job_id=batch.batch_job_id,
            status=batch.status,
        ),
        database_error=batch.database_error,
        warning=None if batch.database_saved else _DB_WARNING,
    )


# ---------------------------------------------------------------------------
# History and batch job views
# ---------------------------------------------------------------------------

@router.get("/analysis-history", response_model=HistoryResponse, summary="Persisted analyses, newest first")
async def analysis_history(
    user_id:     UserId,
    coordinator: Coordinator,
    limit:       Annotated[int, Query(ge=1, le=200)] = 50,
    offset:      Annotated[int, Query(ge=0)] = 0,
) -> HistoryResponse:
    items = await coordinator.persistence.list_history(user_id, limit=limit, offset=offset)
    return HistoryResponse(analyses=items, total=len(items), user_id=user_id)


@router.get("/batch-jobs", summary="Batch jobs for the caller, newest first")
async def list_batch_jobs(
    user_id:     UserId,
    coordinator: Coordinator,
    limit:       Annotated[int, Query(ge=1, le=100)] = 20,
    offset:      Annotated[int, Query(ge=0)] = 0,
) -> dict:
    jobs = await coordinator.list_jobs(user_id, limit=limit, offset=offset)
    return {"success": True, "jobs": jobs, "total": len(jobs)}


@router.get(
    "/batch-jobs/{job_id}",
    summary="One batch job with its files in upload order",
    responses={404: {"model": ErrorResponse}},
)
async def get_batch_job(
    job_id:      uuid.UUID,
    request:     Request,
    user_id:     UserId,
    coordinator: Coordinator,
):
    found = await coordinator.get_job(str(job_id), user_id)
    if found is None:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=ErrorResponse(
                error_code="BATCH_JOB_NOT_FOUND",
                message=f"Batch job {job_id} not found",
                request_id=getattr(request.state, "request_id", None),
            ).model_dump(mode="json"),
        )
    return {"success": True, **found}


@router.get("/ai/status", summary="Reachability of the AI providers")
async def ai_status(gateway: Gateway) -> dict:
    return await gateway.check_availability()
