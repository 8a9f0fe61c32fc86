"""
Document Analysis — Pydantic Schemas

Covers the payloads that flow through the analysis pipeline:
  - AnalysisOptions        request options shared by /analyze and /batch-analyze
  - RawAnalysis            normalized extractor output (pdf / pptx / txt)
  - facet results          the six AI facets and the combined AiAnalysis
  - AnalysisResult         one file's raw + optional AI analysis
  - HTTP response bodies   analyze, batch-analyze, history, batch-job views

Wire format:
  The analysis payloads use camelCase keys (documentInfo, totalWords,
  primaryCategory ...) because the AI providers are prompted with the same
  shape. Python code uses snake_case attributes; aliases bridge the two.
  Always dump with by_alias=True when producing JSON.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Upload limits
# ---------------------------------------------------------------------------

ALLOWED_EXTENSIONS: frozenset[str] = frozenset({".pdf", ".pptx", ".txt"})

CONTENT_TYPES: dict[str, str] = {
    ".pdf":  "application/pdf",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".txt":  "text/plain",
}

MAX_FILE_SIZE_BYTES: int = 50 * 1024 * 1024  # 50 MB
MAX_BATCH_FILES: int = 10


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class BatchStatus(str, Enum):
    """
    Maps to batch_jobs.status.
    Transitions: pending → processing → completed | failed
    """
    PENDING    = "pending"
    PROCESSING = "processing"
    COMPLETED  = "completed"   # includes partial success
    FAILED     = "failed"      # every file failed


class FileStatus(str, Enum):
    COMPLETED = "completed"
    FAILED    = "failed"


class AnalysisType(str, Enum):
    """Derived from which optional stages produced data, never chosen by the caller."""
    BASIC       = "basic"
    ADVANCED    = "advanced"
    OCR         = "ocr"
    AI_ENHANCED = "ai_enhanced"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request options
# ---------------------------------------------------------------------------

class AnalysisOptions(CamelModel):
    """
    Processing-options bundle passed coordinator → worker.

    strategy / priority / document_type are free strings on purpose: unknown
    values are not rejected, ModelSelectionStrategy falls back and records why.
    """
    use_ai:           bool  = Field(False, alias="useAI")
    strategy:         str   = "auto"
    priority:         str   = "balanced"
    temperature:      float = Field(0.2, ge=0.0, le=2.0)
    max_tokens:       int   = Field(1500, ge=1, le=8000)
    ocr_confidence:   int   = Field(75, ge=0, le=100)
    document_type:    str   = "general"
    ai_analysis_type: str   = "balanced"


# ---------------------------------------------------------------------------
# Raw (non-AI) analysis
# ---------------------------------------------------------------------------

class DocumentStatistics(CamelModel):
    total_pages:      int | None = None    # pdf / txt
    total_slides:     int | None = None    # pptx
    total_words:      int = 0
    total_characters: int = 0
    total_lines:      int = 0
    total_sentences:  int = 0
    average_words_per_page: float = 0.0
    file_size:        dict[str, Any] = Field(default_factory=dict)

    @property
    def unit_count(self) -> int:
        """Pages for paged documents, slides for presentations."""
        return self.total_pages or self.total_slides or 0


class AdvancedAnalysis(CamelModel):
    keywords:          list[dict[str, Any]] = Field(default_factory=list)
    phrases:           list[dict[str, Any]] = Field(default_factory=list)
    language:          str = "unknown"
    readability_score: float = 0.0
    entities:          dict[str, list[str]] = Field(default_factory=dict)
    sentiment:         dict[str, Any] = Field(default_factory=dict)
    complexity:        str = "simple"
    topics:            list[dict[str, Any]] = Field(default_factory=list)
    numbers:           list[float] = Field(default_factory=list)
    emails:            list[str] = Field(default_factory=list)
    urls:              list[str] = Field(default_factory=list)
    dates:             list[str] = Field(default_factory=list)


class OcrBlock(CamelModel):
    text:       str = ""
    confidence: float = 0.0        # 0-100, mean word confidence
    pages:      int = 0
    engine:     str = "tesseract"


class RawAnalysis(CamelModel):
    """Common output of every extractor; never contains AI data."""
    document_info: dict[str, Any] = Field(default_factory=dict)
    statistics:    DocumentStatistics = Field(default_factory=DocumentStatistics)
    content:       dict[str, Any] = Field(default_factory=dict)
    structure:     dict[str, Any] = Field(default_factory=dict)
    advanced:      AdvancedAnalysis | None = None
    ocr:           OcrBlock | None = None
    presentation:  dict[str, Any] | None = None
    technical:     dict[str, Any] | None = None

    @property
    def full_text(self) -> str:
        return self.content.get("fullText", "")


# ---------------------------------------------------------------------------
# AI facets
# ---------------------------------------------------------------------------

class SentimentResult(CamelModel):
    sentiment:           str = "neutral"
    confidence:          float = Field(0.5, ge=0.0, le=1.0)
    emotions:            list[str] = Field(default_factory=list)
    tone:                str = "formal"
    emotional_intensity: float = Field(0.5, ge=0.0, le=1.0)
    explanation:         str = ""
    fallback:            bool = False


class ClassificationResult(CamelModel):
    primary_category:     str = "other"
    secondary_categories: list[str] = Field(default_factory=list)
    confidence:           float = Field(0.5, ge=0.0, le=1.0)
    audience:             str = "general"
    purpose:              str = "informative"
    complexity:           str = "intermediate"
    keywords:             list[str] = Field(default_factory=list)
    industry:             str = "other"
    fallback:             bool = False


class SummaryResult(CamelModel):
    summary:           str = ""
    word_count:        int = 0
    compression_ratio: float = 0.0
    fallback:          bool = False


class InsightsResult(CamelModel):
    main_points:   list[str] = Field(default_factory=list)
    key_findings:  list[str] = Field(default_factory=list)
    trends:        list[str] = Field(default_factory=list)
    risks:         list[str] = Field(default_factory=list)
    opportunities: list[str] = Field(default_factory=list)
    action_items:  list[str] = Field(default_factory=list)
    data_points:   list[str] = Field(default_factory=list)
    fallback:      bool = False


class RecommendationsResult(CamelModel):
    improvements:   list[str] = Field(default_factory=list)
    next_steps:     list[str] = Field(default_factory=list)
    tools:          list[str] = Field(default_factory=list)
    resources:      list[str] = Field(default_factory=list)
    best_practices: list[str] = Field(default_factory=list)
    considerations: list[str] = Field(default_factory=list)
    fallback:       bool = False


class QualityResult(CamelModel):
    overall_score: float = Field(5.0, ge=0.0, le=10.0)
    clarity:       float = Field(5.0, ge=0.0, le=10.0)
    coherence:     float = Field(5.0, ge=0.0, le=10.0)
    completeness:  float = Field(5.0, ge=0.0, le=10.0)
    accuracy:      float = Field(5.0, ge=0.0, le=10.0)
    readability:   float = Field(5.0, ge=0.0, le=10.0)
    structure:     float = Field(5.0, ge=0.0, le=10.0)
    strengths:     list[str] = Field(default_factory=list)
    weaknesses:    list[str] = Field(default_factory=list)
    grade:         str = "C"
    fallback:      bool = False


class ProviderStatus(CamelModel):
    """Reachability of a provider; error_code is one of the connectivity codes."""
    provider:         str
    available:        bool
    error_code:       str | None = None
    message:          str = ""
    details:          str | None = None
    available_models: int = 0


class AiAnalysis(CamelModel):
    sentiment:          SentimentResult
    classification:     ClassificationResult
    summary:            SummaryResult
    insights:           InsightsResult
    recommendations:    RecommendationsResult
    quality:            QualityResult
    model:              str
    provider:           str = "groq"
    analysis_type:      str = "balanced"
    tokens_used:        int = 0
    api_calls:          int = 0
    cost_usd:           float = 0.0
    processing_time_ms: float = 0.0
    fallback_facets:    list[str] = Field(default_factory=list)
    secondary_provider: ProviderStatus | None = None
    timestamp:          datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Combined per-file result
# ---------------------------------------------------------------------------

class AnalysisResult(BaseModel):
    """Output of FileProcessingWorker for one file."""
    filename:           str
    file_type:          str                 # extension including the dot
    file_size:          int = 0
    file_hash:          str = ""            # md5 hex of the uploaded bytes
    raw:                RawAnalysis
    ai:                 AiAnalysis | None = None
    ai_invoked:         bool = False        # True when the AI stage ran at all
    model_selection:    dict[str, Any] | None = None
    processing_time_ms: float = 0.0

    def analysis_payload(self) -> dict[str, Any]:
        """The `analysis` object returned to HTTP callers."""
        payload = self.raw.model_dump(mode="json", by_alias=True, exclude_none=True)
        payload["aiAnalysis"] = (
            self.ai.model_dump(mode="json", by_alias=True) if self.ai else None
        )
        if self.model_selection:
            payload["modelSelection"] = self.model_selection
        return payload


# ---------------------------------------------------------------------------
# HTTP responses
# ---------------------------------------------------------------------------

class AnalyzeData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filename:           str
    file_type:          str = Field(..., alias="fileType")
    analysis:           dict[str, Any]
    options:            dict[str, Any] = Field(default_factory=dict)
    processing_time_ms: float
    database_saved:     bool
    document_id:        str | None = None
    analysis_id:        str | None = None


class AnalyzeResponse(BaseModel):
    success:        bool = True
    data:           AnalyzeData
    database_error: str | None = None
    warning:        str | None = None


class BatchFileResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filename:        str
    file_type:       str = Field(..., alias="fileType")
    success:         bool
    analysis:        dict[str, Any] | None = None
    error:           str | None = None
    processing_time: float = Field(0.0, alias="processingTime")
    document_id:     str | None = Field(None, alias="documentId")
    analysis_id:     str | None = Field(None, alias="analysisId")
    database_saved:  bool = False


class BatchAnalyzeData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_files:           int = Field(..., alias="totalFiles")
    successful:            int
    failed:                int
    results:               list[BatchFileResult]
    total_processing_time: float = Field(0.0, alias="totalProcessingTime")
    database_saved:        bool = False
    batch_job_id:          str | None = None
    status:                BatchStatus


class BatchAnalyzeResponse(BaseModel):
    success:        bool = True
    data:           BatchAnalyzeData
    database_error: str | None = None
    warning:        str | None = None


class HistoryItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id:                str
    filename:          str
    file_type:         str = Field(..., alias="fileType")
    uploaded_at:       datetime | None = Field(None, alias="uploadedAt")
    processing_status: str = Field(..., alias="processingStatus")
    file_size:         int = Field(0, alias="fileSize")
    storage_url:       str | None = Field(None, alias="storageUrl")
    metadata:          dict[str, Any] = Field(default_factory=dict)
    analysis:          dict[str, Any] = Field(default_factory=dict)
    processing_time:   float = Field(0.0, alias="processingTime")
    confidence_score:  float = Field(0.0, alias="confidenceScore")


class HistoryResponse(BaseModel):
    success:  bool = True
    analyses: list[HistoryItem]
    total:    int
    user_id:  int


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error — may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str        = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    success:      bool              = False
    error_code:   str               = Field(..., description="Stable machine-readable code")
    message:      str               = Field(..., description="Human-readable summary")
    details:      list[ErrorDetail] = Field(default_factory=list)
    request_id:   str | None        = Field(None, description="Trace ID for log correlation")
    batch_job_id: str | None        = None
