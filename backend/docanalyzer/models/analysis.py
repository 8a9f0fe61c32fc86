"""
SQLAlchemy ORM Models — Documents, Analyses, Results, Batch Jobs

Eight tables, all keyed by UUID and scoped to a numeric user id
(user_int_id).  Row-level security is enforced by PostgreSQL policies that
read the app.current_user_id GUC set in db/session.py; the models never add
WHERE user_int_id clauses themselves.

  documents ──< document_analyses ──┬── analysis_results_basic     (1:1)
                                    ├── analysis_results_advanced  (0:1)
                                    ├── analysis_results_ai        (0:1)
                                    └── analysis_metrics           (0:1)

  batch_jobs ──< batch_job_files ──> documents / document_analyses (nullable)

A missing advanced / ai / metrics row means "not computed", never corruption.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Declarative base — shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


def _uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )


def _analysis_fk(unique: bool = True) -> Mapped[uuid.UUID]:
    return mapped_column(
        UUID(as_uuid=True),
        ForeignKey("document_analyses.id", ondelete="CASCADE"),
        nullable=False,
        unique=unique,
    )


def _created_at() -> Mapped[datetime]:
    return mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


# ---------------------------------------------------------------------------
# documents
# ---------------------------------------------------------------------------

class Document(Base):
    """
    Identity of one uploaded artifact.  Written once, after the file's raw
    analysis; never mutated by the analysis pipeline.

    metadata carries upload time, options, batch_job_id and a compact
    analysis snapshot read back by the history endpoint.
    """

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint("file_type IN ('pdf', 'pptx', 'txt')", name="documents_file_type_check"),
        Index("idx_documents_user_uploaded", "user_int_id", "uploaded_at"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_int_id:       Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    original_filename: Mapped[str] = mapped_column(Text, nullable=False)
    file_path:         Mapped[str] = mapped_column(Text, nullable=False)
    file_size_bytes:   Mapped[int] = mapped_column(BigInteger, nullable=False)
    file_type:         Mapped[str] = mapped_column(String(10), nullable=False)
    mime_type:         Mapped[str] = mapped_column(Text, nullable=False)
    file_hash:         Mapped[str] = mapped_column(String(32), nullable=False, comment="MD5 of file bytes")
    processing_status: Mapped[str] = mapped_column(Text, nullable=False, server_default="completed")
    doc_metadata: Mapped[dict] = mapped_column(
        "metadata",                 # PostgreSQL column name stays 'metadata'
        JSONB,
        nullable=False,
        default=dict,
        server_default="{}",
    )
    uploaded_at: Mapped[datetime] = _created_at()

    def __repr__(self) -> str:
        return f"<Document id={self.id} user={self.user_int_id} file={self.original_filename!r}>"


# ---------------------------------------------------------------------------
# document_analyses
# ---------------------------------------------------------------------------

class DocumentAnalysis(Base):
    """
    One analysis run against a Document.

    analysis_type is derived from which optional stages produced data:
        ai_enhanced > advanced > ocr > basic
    """

    __tablename__ = "document_analyses"
    __table_args__ = (
        CheckConstraint(
            "analysis_type IN ('basic', 'advanced', 'ocr', 'ai_enhanced')",
            name="document_analyses_type_check",
        ),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="document_analyses_status_check",
        ),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_int_id:        Mapped[int]   = mapped_column(Integer, nullable=False, index=True)
    analysis_type:      Mapped[str]   = mapped_column(Text, nullable=False, server_default="basic")
    ai_model_used:      Mapped[str]   = mapped_column(Text, nullable=False, server_default="none")
    ai_strategy:        Mapped[str]   = mapped_column(Text, nullable=False, server_default="auto")
    analysis_config:    Mapped[dict]  = mapped_column(JSONB, nullable=False, server_default="{}")
    processing_time_ms: Mapped[int]   = mapped_column(Integer, nullable=False, server_default="0")
    confidence_score:   Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
    status:             Mapped[str]   = mapped_column(Text, nullable=False, server_default="completed")
    created_at:         Mapped[datetime] = _created_at()


# ---------------------------------------------------------------------------
# analysis result children
# ---------------------------------------------------------------------------

class AnalysisResultsBasic(Base):
    __tablename__ = "analysis_results_basic"

    id: Mapped[uuid.UUID] = _uuid_pk()
    analysis_id:       Mapped[uuid.UUID] = _analysis_fk()
    page_count:        Mapped[int]   = mapped_column(Integer, nullable=False, server_default="0")
    word_count:        Mapped[int]   = mapped_column(Integer, nullable=False, server_default="0")
    character_count:   Mapped[int]   = mapped_column(Integer, nullable=False, server_default="0")
    language_detected: Mapped[str]   = mapped_column(Text, nullable=False, server_default="unknown")
    readability_score: Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
    document_info:     Mapped[dict]  = mapped_column(JSONB, nullable=False, server_default="{}")
    statistics:        Mapped[dict]  = mapped_column(JSONB, nullable=False, server_default="{}")
    content:           Mapped[dict]  = mapped_column(JSONB, nullable=False, server_default="{}")
    structure:         Mapped[dict]  = mapped_column(JSONB, nullable=False, server_default="{}")
    created_at:        Mapped[datetime] = _created_at()


class AnalysisResultsAdvanced(Base):
    __tablename__ = "analysis_results_advanced"

    id: Mapped[uuid.UUID] = _uuid_pk()
    analysis_id:        Mapped[uuid.UUID] = _analysis_fk()
    keywords:           Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")
    phrases:            Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")
    entities:           Mapped[dict] = mapped_column(JSONB, nullable=False, server_default="{}")
    sentiment_analysis: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default="{}")
    classification:     Mapped[dict] = mapped_column(JSONB, nullable=False, server_default="{}")
    advanced_metrics:   Mapped[dict] = mapped_column(JSONB, nullable=False, server_default="{}")
    created_at:         Mapped[datetime] = _created_at()


class AnalysisResultsAi(Base):
    __tablename__ = "analysis_results_ai"

    id: Mapped[uuid.UUID] = _uuid_pk()
    analysis_id:        Mapped[uuid.UUID] = _analysis_fk()
    ai_model:           Mapped[str]     = mapped_column(Text, nullable=False)
    ai_provider:        Mapped[str]     = mapped_column(Text, nullable=False, server_default="groq")
    prompt_used:        Mapped[str]     = mapped_column(Text, nullable=False, server_default="")
    response_generated: Mapped[str]     = mapped_column(Text, nullable=False, comment="AiAnalysis as JSON")
    tokens_used:        Mapped[int]     = mapped_column(Integer, nullable=False, server_default="0")
    cost_usd:           Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False, server_default="0")
    processing_time_ms: Mapped[int]     = mapped_column(Integer, nullable=False, server_default="0")
    quality_metrics:    Mapped[dict]    = mapped_column(JSONB, nullable=False, server_default="{}")
    created_at:         Mapped[datetime] = _created_at()


class AnalysisMetrics(Base):
    """Written only when the AI stage was invoked."""

    __tablename__ = "analysis_metrics"

    id: Mapped[uuid.UUID] = _uuid_pk()
    analysis_id:             Mapped[uuid.UUID] = _analysis_fk()
    processing_time_seconds: Mapped[float]   = mapped_column(Float, nullable=False, server_default="0")
    processing_duration_ms:  Mapped[int]     = mapped_column(Integer, nullable=False, server_default="0")
    api_calls_count:         Mapped[int]     = mapped_column(Integer, nullable=False, server_default="0")
    tokens_used:             Mapped[int]     = mapped_column(Integer, nullable=False, server_default="0")
    cache_hits:              Mapped[int]     = mapped_column(Integer, nullable=False, server_default="0")
    total_cost:              Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False, server_default="0")
    created_at:              Mapped[datetime] = _created_at()


# ---------------------------------------------------------------------------
# batch_jobs
# ---------------------------------------------------------------------------

class BatchJob(Base):
    """
    One batch-analysis request spanning 1..N files.

    State machine (status column):
        pending → processing → completed | failed

    Invariants kept by the coordinator:
        processed_files == successful_files + failed_files <= total_files
        status is terminal only once processed_files == total_files
    """

    __tablename__ = "batch_jobs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="batch_jobs_status_check",
        ),
        CheckConstraint(
            "processed_files = successful_files + failed_files AND processed_files <= total_files",
            name="batch_jobs_counters_check",
        ),
        Index("idx_batch_jobs_user_created", "user_int_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_int_id:      Mapped[int] = mapped_column(Integer, nullable=False)
    job_name:         Mapped[str] = mapped_column(Text, nullable=False)
    job_description:  Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    status:           Mapped[str] = mapped_column(Text, nullable=False, server_default="pending")
    total_files:      Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    processed_files:  Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    successful_files: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    failed_files:     Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    analysis_config:  Mapped[dict] = mapped_column(JSONB, nullable=False, server_default="{}")
    use_ai:           Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    ai_strategy:      Mapped[str]  = mapped_column(Text, nullable=False, server_default="auto")
    ocr_confidence:   Mapped[int]  = mapped_column(Integer, nullable=False, server_default="75")
    file_list:        Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")
    results_summary:  Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    total_processing_time_ms:   Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    average_processing_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_message:    Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at:       Mapped[datetime] = _created_at()
    started_at:       Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at:     Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class BatchJobFile(Base):
    """Exactly one row per input file, written once after that file terminates."""

    __tablename__ = "batch_job_files"
    __table_args__ = (
        CheckConstraint("status IN ('completed', 'failed')", name="batch_job_files_status_check"),
        Index("idx_batch_job_files_job_order", "batch_job_id", "file_order"),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    batch_job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("batch_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    document_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("documents.id", ondelete="SET NULL"),
        nullable=True,
    )
    analysis_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("document_analyses.id", ondelete="SET NULL"),
        nullable=True,
    )
    file_order:        Mapped[int]  = mapped_column(Integer, nullable=False)
    original_filename: Mapped[str]  = mapped_column(Text, nullable=False)
    file_type:         Mapped[str]  = mapped_column(String(10), nullable=False)
    file_size_bytes:   Mapped[int]  = mapped_column(BigInteger, nullable=False, server_default="0")
    status:            Mapped[str]  = mapped_column(Text, nullable=False)
    success:           Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_message:     Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processing_started_at:   Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    processing_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    processing_time_ms: Mapped[int]   = mapped_column(Integer, nullable=False, server_default="0")
    page_count:         Mapped[int]   = mapped_column(Integer, nullable=False, server_default="0")
    word_count:         Mapped[int]   = mapped_column(Integer, nullable=False, server_default="0")
    character_count:    Mapped[int]   = mapped_column(Integer, nullable=False, server_default="0")
    confidence_score:   Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
    database_saved:     Mapped[bool]  = mapped_column(Boolean, nullable=False, server_default="false")
    created_at:         Mapped[datetime] = _created_at()


TABLES: dict[str, type[Base]] = {
    model.__tablename__: model
    for model in (
        Document,
        DocumentAnalysis,
        AnalysisResultsBasic,
        AnalysisResultsAdvanced,
        AnalysisResultsAi,
        AnalysisMetrics,
        BatchJob,
        BatchJobFile,
    )
}
