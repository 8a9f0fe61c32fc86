"""
Error taxonomy for the analysis pipeline.

  ValidationError    request rejected before any processing (HTTP 400)
  ExtractionError    one file could not be parsed; the batch continues
  AIProviderError    provider call failed; always absorbed at the facet boundary
  PersistenceError   a database write/read failed; the analysis is still returned
  CoordinatorError   the batch job row could not be created; no file is processed

Only ValidationError and CoordinatorError ever reach the HTTP layer as
error responses. The others are recorded per file or turned into fallbacks.
"""

from __future__ import annotations


class DocumentAnalyzerError(Exception):
    """Base class; carries a stable machine-readable error code."""

    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, error_code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code


class ValidationError(DocumentAnalyzerError):
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, error_code: str | None = None, field: str | None = None) -> None:
        super().__init__(message, error_code)
        self.field = field


class ExtractionError(DocumentAnalyzerError):
    error_code = "EXTRACTION_ERROR"


class AIProviderError(DocumentAnalyzerError):
    error_code = "AI_PROVIDER_ERROR"

    def __init__(self, message: str, facet: str, error_code: str | None = None) -> None:
        super().__init__(message, error_code)
        self.facet = facet


class PersistenceError(DocumentAnalyzerError):
    error_code = "DATABASE_ERROR"

    def __init__(self, message: str, stage: str | None = None) -> None:
        super().__init__(message)
        self.stage = stage


class CoordinatorError(DocumentAnalyzerError):
    error_code = "BATCH_ANALYSIS_ERROR"

    def __init__(self, message: str, batch_job_id: str | None = None) -> None:
        super().__init__(message)
        self.batch_job_id = batch_job_id
