"""
Result Persistence Layer

Writes one file's AnalysisResult across the result tables as an ordered,
best-effort sequence and reports what made it to the database.

  documents                  ── required; failure abandons everything below
    └─ document_analyses     ── required for the children; failure stops here
         ├─ analysis_results_basic      always
         ├─ analysis_results_advanced   only when raw.advanced is present
         ├─ analysis_results_ai         only when an AiAnalysis is present
         └─ analysis_metrics            only when the AI stage was invoked

Rows already written are never rolled back when a later stage fails; a
missing child row means "not computed".  The children are written
independently of each other, so a failed advanced row does not prevent the
ai row.

Nothing here raises PersistenceError to the caller: the outcome is a
PersistenceReport, and the analysis itself is always returned upstream.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from docanalyzer.core.errors import PersistenceError
from docanalyzer.db.client import PersistenceClient
from docanalyzer.schemas.analysis import (
    CONTENT_TYPES,
    AnalysisOptions,
    AnalysisResult,
    AnalysisType,
    HistoryItem,
)

logger = logging.getLogger(__name__)

DOCUMENTS = "documents"
ANALYSES  = "document_analyses"
BASIC     = "analysis_results_basic"
ADVANCED  = "analysis_results_advanced"
AI        = "analysis_results_ai"
METRICS   = "analysis_metrics"


# ---------------------------------------------------------------------------
# Report / read models
# ---------------------------------------------------------------------------

@dataclass
class PersistenceReport:
    document_id:    str | None = None
    analysis_id:    str | None = None
    stages_written: list[str] = field(default_factory=list)
    failures:       list[tuple[str, str]] = field(default_factory=list)   # (stage, message)

    @property
    def saved(self) -> bool:
        return self.analysis_id is not None and not self.failures

    @property
    def failed_stage(self) -> str | None:
        return self.failures[0][0] if self.failures else None

    @property
    def error(self) -> str | None:
        return self.failures[0][1] if self.failures else None


@dataclass
class StoredAnalysis:
    """A DocumentAnalysis read back with its children; absent children are None."""
    analysis: dict[str, Any]
    document: dict[str, Any] | None = None
    basic:    dict[str, Any] | None = None
    advanced: dict[str, Any] | None = None
    ai:       dict[str, Any] | None = None
    metrics:  dict[str, Any] | None = None


def derive_analysis_type(result: AnalysisResult) -> AnalysisType:
    """ai_enhanced > advanced > ocr > basic, by which data is present."""
    if result.ai is not None:
        return AnalysisType.AI_ENHANCED
    if result.raw.advanced is not None:
        return AnalysisType.ADVANCED
    if result.raw.ocr is not None:
        return AnalysisType.OCR
    return AnalysisType.BASIC


# ---------------------------------------------------------------------------
# Row builders
# ---------------------------------------------------------------------------

def _document_row(
    result:       AnalysisResult,
    options:      AnalysisOptions,
    user_id:      int,
    file_path:    str,
    batch_job_id: str | None,
) -> dict[str, Any]:
    raw = result.raw
    advanced = raw.advanced
    return {
        "user_int_id":       user_id,
        "original_filename": result.filename,
        "file_path":         file_path,
        "file_size_bytes":   result.file_size,
        "file_type":         result.file_type.lstrip("."),
        "mime_type":         CONTENT_TYPES.get(result.file_type, "application/octet-stream"),
        "file_hash":         result.file_hash,
        "processing_status": "completed",
        "metadata": {
            "upload_time":      datetime.now(timezone.utc).isoformat(),
            "original_name":    result.filename,
            "analysis_options": options.model_dump(by_alias=True),
            "batch_job_id":     batch_job_id,
            # snapshot read back by the history endpoint
            "analysis_results": raw.statistics.model_dump(mode="json", by_alias=True),
            "advanced_results": advanced.model_dump(mode="json", by_alias=True) if advanced else None,
            "ai_results":       result.ai.model_dump(mode="json", by_alias=True) if result.ai else None,
            "processing_time":  result.processing_time_ms,
            "confidence_score": advanced.readability_score if advanced else 0,
        },
    }


def _analysis_row(
    result:        AnalysisResult,
    options:       AnalysisOptions,
    user_id:       int,
    document_id:   str,
    analysis_type: AnalysisType,
) -> dict[str, Any]:
    advanced = result.raw.advanced
    return {
        "document_id":        document_id,
        "user_int_id":        user_id,
        "analysis_type":      analysis_type.value,
        "ai_model_used":      result.ai.model if result.ai else "none",
        "ai_strategy":        options.strategy,
        "analysis_config":    options.model_dump(by_alias=True),
        "processing_time_ms": int(result.processing_time_ms),
        "confidence_score":   advanced.readability_score if advanced else 0.0,
        "status":             "completed",
    }


def _basic_row(result: AnalysisResult, analysis_id: str) -> dict[str, Any]:
    raw = result.raw
    stats = raw.statistics
    return {
        "analysis_id":       analysis_id,
        "page_count":        stats.unit_count,
        "word_count":        stats.total_words,
        "character_count":   stats.total_characters,
        "language_detected": raw.advanced.language if raw.advanced else "unknown",
        "readability_score": raw.advanced.readability_score if raw.advanced else 0.0,
        "document_info":     raw.document_info,
        "statistics":        stats.model_dump(mode="json", by_alias=True),
        "content":           raw.content,
        "structure":         raw.structure,
    }


def _advanced_row(result: AnalysisResult, analysis_id: str) -> dict[str, Any]:
    adv = result.raw.advanced
    classification = {"complexity": adv.complexity, "topics": adv.topics, "language": adv.language}
    return {
        "analysis_id":        analysis_id,
        "keywords":           adv.keywords,
        "phrases":            adv.phrases,
        "entities":           adv.entities,
        "sentiment_analysis": adv.sentiment,
        "classification":     classification,
        "advanced_metrics": {
            "numbers": adv.numbers,
            "emails":  adv.emails,
            "urls":    adv.urls,
            "dates":   adv.dates,
        },
    }


def _ai_row(result: AnalysisResult, analysis_id: str) -> dict[str, Any]:
    ai = result.ai
    return {
        "analysis_id":        analysis_id,
        "ai_model":           ai.model,
        "ai_provider":        ai.provider,
        "prompt_used":        "Document analysis",
        "response_generated": json.dumps(ai.model_dump(mode="json", by_alias=True)),
        "tokens_used":        ai.tokens_used,
        "cost_usd":           ai.cost_usd,
        "processing_time_ms": int(ai.processing_time_ms),
        "quality_metrics": {
            "sentiment_confidence":      ai.sentiment.confidence,
            "classification_confidence": ai.classification.confidence,
            "overall_quality":           ai.quality.overall_score,
            "fallback_facets":           ai.fallback_facets,
        },
    }


def _metrics_row(result: AnalysisResult, analysis_id: str) -> dict[str, Any]:
    ai = result.ai
    return {
        "analysis_id":             analysis_id,
        "processing_time_seconds": round(result.processing_time_ms / 1000, 3),
        "processing_duration_ms":  int(result.processing_time_ms),
        "api_calls_count":         ai.api_calls if ai else 0,
        "tokens_used":             ai.tokens_used if ai else 0,
        "cache_hits":              0,
        "total_cost":              ai.cost_usd if ai else 0.0,
    }


# ---------------------------------------------------------------------------
# Layer
# ---------------------------------------------------------------------------

class ResultPersistenceLayer:
    """Stateless apart from the injected PersistenceClient."""

    def __init__(self, client: PersistenceClient) -> None:
        self._client = client

    async def save(
        self,
        result:       AnalysisResult,
        options:      AnalysisOptions,
        user_id:      int,
        file_path:    str = "",
        batch_job_id: str | None = None,
    ) -> PersistenceReport:
        report = PersistenceReport()
        analysis_type = derive_analysis_type(result)

        try:
            await self._client.set_user_context(user_id)
            document = await self._client.insert(
                DOCUMENTS, _document_row(result, options, user_id, file_path, batch_job_id),
            )
        except PersistenceError as exc:
            return self._failed(report, DOCUMENTS, exc, result.filename)
        report.document_id = str(document["id"])
        report.stages_written.append(DOCUMENTS)

        try:
            analysis = await self._client.insert(
                ANALYSES, _analysis_row(result, options, user_id, report.document_id, analysis_type),
            )
        except PersistenceError as exc:
            return self._failed(report, ANALYSES, exc, result.filename)
        report.analysis_id = str(analysis["id"])
        report.stages_written.append(ANALYSES)

        children = [(BASIC, _basic_row)]
        if result.raw.advanced is not None:
            children.append((ADVANCED, _advanced_row))
        if result.ai is not None:
            children.append((AI, _ai_row))
        if result.ai_invoked:
            children.append((METRICS, _metrics_row))

        for table, build in children:
            try:
                await self._client.insert(table, build(result, report.analysis_id))
            except PersistenceError as exc:
                self._failed(report, table, exc, result.filename)
                continue
            report.stages_written.append(table)

        logger.info(
            "Persistence | file=%s document=%s analysis=%s type=%s stages=%d failed=%s",
            result.filename, report.document_id, report.analysis_id, analysis_type.value,
            len(report.stages_written), report.failed_stage or "-",
        )
        return report

    @staticmethod
    def _failed(report: PersistenceReport, stage: str, exc: PersistenceError, filename: str) -> PersistenceReport:
        logger.warning("Persistence | file=%s stage=%s failed: %s", filename, stage, exc.message)
        report.failures.append((stage, exc.message))
        return report

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def load_analysis(self, analysis_id: str, user_id: int) -> StoredAnalysis | None:
        """Raises PersistenceError when the database is unreachable."""
        await self._client.set_user_context(user_id)
        rows = await self._client.select(ANALYSES, {"id": analysis_id})
        if not rows:
            return None
        analysis = rows[0]

        documents = await self._client.select(DOCUMENTS, {"id": analysis["document_id"]})
        stored = StoredAnalysis(analysis=analysis, document=documents[0] if documents else None)
        for table, attr in ((BASIC, "basic"), (ADVANCED, "advanced"), (AI, "ai"), (METRICS, "metrics")):
            children = await self._client.select(table, {"analysis_id": analysis_id}, limit=1)
            setattr(stored, attr, children[0] if children else None)
        return stored

    async def list_history(self, user_id: int, limit: int = 50, offset: int = 0) -> list[HistoryItem]:
        """
        Documents for the user, newest first, in the flat history shape.

        Raises PersistenceError when the database is unreachable.
        """
        await self._client.set_user_context(user_id)
        # RLS scopes rows as well; the filter keeps the query explicit
        documents = await self._client.select(
            DOCUMENTS,
            {"user_int_id": user_id},
            order_by="-uploaded_at",
            limit=limit,
            offset=offset,
        )
        return [history_item(doc) for doc in documents]


def history_item(document: dict[str, Any]) -> HistoryItem:
    meta = document.get("metadata") or {}
    return HistoryItem(
        id=str(document["id"]),
        filename=document["original_filename"],
        fileType=document["file_type"],
        uploadedAt=document.get("uploaded_at"),
        processingStatus=document.get("processing_status", "completed"),
        fileSize=document.get("file_size_bytes", 0),
        storageUrl=meta.get("storage_url"),
        metadata=meta,
        analysis={
            "statistics": meta.get("analysis_results"),
            "advanced":   meta.get("advanced_results"),
            "aiAnalysis": meta.get("ai_results"),
        },
        processingTime=meta.get("processing_time") or 0,
        confidenceScore=meta.get("confidence_score") or 0,
    )
