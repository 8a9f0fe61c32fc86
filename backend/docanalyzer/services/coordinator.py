"""
Batch Job Coordinator

Top-level entry for 1..N uploaded files.

  run_batch(sources, options, user_id)
      │
      ├── insert batch_jobs row (status=processing)   failure → CoordinatorError
      │
      ├── for each file, in upload order:
      │       FileProcessingWorker.process()          compute
      │       ResultPersistenceLayer.save()           persist (success only)
      │       insert batch_job_files row              exactly one per file
      │       BatchCounters.record() + update job     once per file
      │
      └── final update: status, completed_at, timings, results_summary

Job state machine:

  pending ──► processing ──► completed   (at least one file succeeded)
                        └──► failed      (every file failed, or the loop itself broke)

Files run sequentially to bound memory (each may carry OCR buffers); the
AI facets of one file run concurrently inside the gateway.  A file-level
failure never escapes the loop.  Writes to the job rows after creation are
best-effort: failures are logged and reported as database_error.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from docanalyzer.core.errors import CoordinatorError, PersistenceError, ValidationError
from docanalyzer.db.client import PersistenceClient
from docanalyzer.llm.gateway import AIProviderGateway
from docanalyzer.processing import DocumentTypeAnalyzer
from docanalyzer.schemas.analysis import (
    AnalysisOptions,
    BatchFileResult,
    BatchStatus,
    FileStatus,
)
from docanalyzer.services.persistence import PersistenceReport, ResultPersistenceLayer
from docanalyzer.services.worker import FileProcessingWorker, SourceFile, WorkerOutcome

logger = logging.getLogger(__name__)

BATCH_JOBS      = "batch_jobs"
BATCH_JOB_FILES = "batch_job_files"


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------

@dataclass
class BatchCounters:
    """
    processed == successful + failed <= total, checked on every change.
    Single writer: the coordinator loop.
    """
    total:      int
    processed:  int = 0
    successful: int = 0
    failed:     int = 0

    def record(self, success: bool) -> None:
        if self.processed >= self.total:
            raise RuntimeError(f"batch already complete ({self.processed}/{self.total})")
        if success:
            self.successful += 1
        else:
            self.failed += 1
        self.processed += 1
        self._check()

    def _check(self) -> None:
        if self.processed != self.successful + self.failed or self.processed > self.total:
            raise RuntimeError(f"batch counters inconsistent: {self.as_row()}")

    @property
    def done(self) -> bool:
        return self.processed == self.total

    @property
    def status(self) -> BatchStatus:
        if not self.done:
            return BatchStatus.PROCESSING
        if self.total > 0 and self.successful == 0:
            return BatchStatus.FAILED
        return BatchStatus.COMPLETED

    def as_row(self) -> dict[str, int]:
        return {
            "processed_files":  self.processed,
            "successful_files": self.successful,
            "failed_files":     self.failed,
        }


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

@dataclass
class SingleAnalysisOutcome:
    outcome: WorkerOutcome
    report:  PersistenceReport | None = None

    @property
    def database_saved(self) -> bool:
        return self.report is not None and self.report.saved


@dataclass
class BatchOutcome:
    batch_job_id:             str
    status:                   BatchStatus
    counters:                 BatchCounters
    results:                  list[BatchFileResult] = field(default_factory=list)
    total_processing_time_ms: float = 0.0
    database_error:           str | None = None

    @property
    def database_saved(self) -> bool:
        return self.database_error is None


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class BatchJobCoordinator:
    """
    All collaborators are constructor-injected.

    Usage::

        coordinator = BatchJobCoordinator(client, gateway, DocumentTypeAnalyzer(ocr))
        outcome = await coordinator.run_batch(sources, options, user_id=7)
    """

    def __init__(
        self,
        client:   PersistenceClient,
        gateway:  AIProviderGateway,
        analyzer: DocumentTypeAnalyzer | None = None,
        worker:   FileProcessingWorker | None = None,
    ) -> None:
        self._client      = client
        self._worker      = worker or FileProcessingWorker(gateway, analyzer)
        self._persistence = ResultPersistenceLayer(client)

    @property
    def persistence(self) -> ResultPersistenceLayer:
        return self._persistence

    # -----------------------------------------------------------------------
    # Single file
    # -----------------------------------------------------------------------

    async def analyze_single(
        self,
        source:  SourceFile,
        options: AnalysisOptions,
        user_id: int,
    ) -> SingleAnalysisOutcome:
        outcome = await self._process(source, options)
        if not outcome.succeeded:
            return SingleAnalysisOutcome(outcome=outcome)
        report = await self._persistence.save(outcome.result, options, user_id, file_path=source.path)
        return SingleAnalysisOutcome(outcome=outcome, report=report)

    # -----------------------------------------------------------------------
    # Batch
    # -----------------------------------------------------------------------

    async def run_batch(
        self,
        sources:         list[SourceFile],
        options:         AnalysisOptions,
        user_id:         int,
        job_name:        str | None = None,
        job_description: str | None = None,
    ) -> BatchOutcome:
        if not sources:
            raise ValidationError("No files were uploaded", error_code="NO_FILES_UPLOADED")

        t0 = time.perf_counter()
        job_id = await self._create_job(sources, options, user_id, job_name, job_description)
        counters = BatchCounters(total=len(sources))
        batch = BatchOutcome(batch_job_id=job_id, status=BatchStatus.PROCESSING, counters=counters)

        try:
            for order, source in enumerate(sources):
                result = await self._run_file(order, source, options, user_id, job_id, counters, batch)
                batch.results.append(result)
        except Exception as exc:
            logger.exception("Coordinator | job=%s aborted after %d files", job_id, counters.processed)
            await self._best_effort_update(job_id, batch, {
                "status":        BatchStatus.FAILED.value,
                "completed_at":  datetime.now(timezone.utc),
                "error_message": str(exc),
                **counters.as_row(),
            })
            raise CoordinatorError(f"Batch analysis failed: {exc}", batch_job_id=job_id) from exc

        batch.status = counters.status
        batch.total_processing_time_ms = round((time.perf_counter() - t0) * 1000, 2)
        average = round(batch.total_processing_time_ms / counters.total)
        await self._best_effort_update(job_id, batch, {
            "status":                     batch.status.value,
            "completed_at":               datetime.now(timezone.utc),
            "total_processing_time_ms":   int(batch.total_processing_time_ms),
            "average_processing_time_ms": average,
            "results_summary": {
                "totalFiles":            counters.total,
                "successful":            counters.successful,
                "failed":                counters.failed,
                "totalProcessingTime":   int(batch.total_processing_time_ms),
                "averageProcessingTime": average,
            },
            **counters.as_row(),
        })

        logger.info(
            "Coordinator | job=%s status=%s ok=%d failed=%d total=%d elapsed_ms=%.0f",
            job_id, batch.status.value, counters.successful, counters.failed,
            counters.total, batch.total_processing_time_ms,
        )
        return batch

    async def _create_job(
        self,
        sources:         list[SourceFile],
        options:         AnalysisOptions,
        user_id:         int,
        job_name:        str | None,
        job_description: str | None,
    ) -> str:
        now = datetime.now(timezone.utc)
        row = {
            "user_int_id":      user_id,
            "job_name":         job_name or f"Batch Analysis {now.isoformat()}",
            "job_description":  job_description or f"Analysis of {len(sources)} files",
            "status":           BatchStatus.PROCESSING.value,
            "total_files":      len(sources),
            "processed_files":  0,
            "successful_files": 0,
            "failed_files":     0,
            "analysis_config":  options.model_dump(by_alias=True),
            "use_ai":           options.use_ai,
            "ai_strategy":      options.strategy,
            "ocr_confidence":   options.ocr_confidence,
            "started_at":       now,
            "file_list": [
                {"original_filename": s.filename, "file_type": s.file_type, "file_size_bytes": s.size}
                for s in sources
            ],
        }
        try:
            await self._client.set_user_context(user_id)
            job = await self._client.insert(BATCH_JOBS, row)
        except PersistenceError as exc:
            logger.exception("Coordinator | could not create batch job user=%s files=%d", user_id, len(sources))
            raise CoordinatorError(f"Could not create batch job: {exc.message}") from exc

        job_id = str(job["id"])
        logger.info("Coordinator | job=%s created user=%s files=%d ai=%s", job_id, user_id, len(sources), options.use_ai)
        return job_id

    async def _run_file(
        self,
        order:    int,
        source:   SourceFile,
        options:  AnalysisOptions,
        user_id:  int,
        job_id:   str,
        counters: BatchCounters,
        batch:    BatchOutcome,
    ) -> BatchFileResult:
        started = datetime.now(timezone.utc)
        outcome = await self._process(source, options)

        report: PersistenceReport | None = None
        if outcome.succeeded:
            report = await self._persistence.save(
                outcome.result, options, user_id, file_path=source.path, batch_job_id=job_id,
            )

        counters.record(outcome.succeeded)
        await self._record_file(order, source, outcome, report, job_id, started, batch)
        await self._best_effort_update(job_id, batch, counters.as_row())

        return BatchFileResult(
            filename       = source.filename,
            fileType       = source.file_type,
            success        = outcome.succeeded,
            analysis       = outcome.result.analysis_payload() if outcome.result else None,
            error          = outcome.error,
            processingTime = outcome.processing_time_ms,
            documentId     = report.document_id if report else None,
            analysisId     = report.analysis_id if report else None,
            database_saved = report.saved if report else False,
        )

    async def _process(self, source: SourceFile, options: AnalysisOptions) -> WorkerOutcome:
        try:
            return await self._worker.process(source, options)
        except Exception as exc:
            logger.exception("Coordinator | file=%s crashed in worker", source.filename)
            return WorkerOutcome(source=source, error=str(exc) or type(exc).__name__, error_code="INTERNAL_ERROR")

    async def _record_file(
        self,
        order:   int,
        source:  SourceFile,
        outcome: WorkerOutcome,
        report:  PersistenceReport | None,
        job_id:  str,
        started: datetime,
        batch:   BatchOutcome,
    ) -> None:
        stats = outcome.result.raw.statistics if outcome.result else None
        advanced = outcome.result.raw.advanced if outcome.result else None
        row: dict[str, Any] = {
            "batch_job_id":            job_id,
            "document_id":             report.document_id if report else None,
            "analysis_id":             report.analysis_id if report else None,
            "file_order":              order,
            "original_filename":       source.filename,
            "file_type":               source.file_type,
            "file_size_bytes":         source.size,
            "status":                  (FileStatus.COMPLETED if outcome.succeeded else FileStatus.FAILED).value,
            "success":                 outcome.succeeded,
            "error_message":           outcome.error,
            "processing_started_at":   started,
            "processing_completed_at": datetime.now(timezone.utc),
            "processing_time_ms":      int(outcome.processing_time_ms),
            "page_count":              stats.unit_count if stats else 0,
            "word_count":              stats.total_words if stats else 0,
            "character_count":         stats.total_characters if stats else 0,
            "confidence_score":        advanced.readability_score if advanced else 0.0,
            "database_saved":          bool(report and report.saved),
        }
        try:
            await self._client.insert(BATCH_JOB_FILES, row)
        except PersistenceError as exc:
            logger.warning("Coordinator | job=%s file=%s row not written: %s", job_id, source.filename, exc.message)
            batch.database_error = batch.database_error or exc.message

    async def _best_effort_update(self, job_id: str, batch: BatchOutcome, values: dict[str, Any]) -> None:
        try:
            await self._client.update(BATCH_JOBS, job_id, values)
        except PersistenceError as exc:
            logger.warning("Coordinator | job=%s update failed: %s", job_id, exc.message)
            batch.database_error = batch.database_error or exc.message

    # -----------------------------------------------------------------------
    # Read-only job views
    # -----------------------------------------------------------------------

    async def get_job(self, job_id: str, user_id: int) -> dict[str, Any] | None:
        """Job row with its file rows in upload order. Raises PersistenceError."""
        await self._client.set_user_context(user_id)
        jobs = await self._client.select(BATCH_JOBS, {"id": job_id})
        if not jobs:
            return None
        files = await self._client.select(BATCH_JOB_FILES, {"batch_job_id": job_id}, order_by="file_order")
        return {"job": jobs[0], "files": files}

    async def list_jobs(self, user_id: int, limit: int = 20, offset: int = 0) -> list[dict[str, Any]]:
        await self._client.set_user_context(user_id)
        return await self._client.select(
            BATCH_JOBS, {"user_int_id": user_id}, order_by="-created_at", limit=limit, offset=offset,
        )
