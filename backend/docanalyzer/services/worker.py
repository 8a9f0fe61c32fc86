"""
File Processing Worker

Turns one uploaded file into one AnalysisResult:

  1. read bytes, DocumentTypeAnalyzer → RawAnalysis      (hard failure point)
  2. if use_ai: ModelSelectionStrategy → AIProviderGateway  (never fatal)
  3. merge → AnalysisResult{raw, ai?, processing_time_ms}

A corrupt or unsupported file ends this file with a WorkerOutcome carrying
the error; nothing is raised, so the rest of a batch is unaffected.  Step 2
failing in whole or in part leaves the raw analysis intact.

The worker does not persist anything; the coordinator hands the result to
ResultPersistenceLayer afterwards.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from pathlib import Path

from docanalyzer.core.errors import DocumentAnalyzerError
from docanalyzer.llm.gateway import AIProviderGateway
from docanalyzer.llm.router import DocumentProfile, ModelSelectionStrategy
from docanalyzer.processing import DEFAULT_OCR_CONFIG, DocumentTypeAnalyzer, OCRConfig
from docanalyzer.processing.extractor import normalize_extension
from docanalyzer.schemas.analysis import AiAnalysis, AnalysisOptions, AnalysisResult, RawAnalysis

logger = logging.getLogger(__name__)


@dataclass
class SourceFile:
    """One uploaded file spooled to disk."""
    path:      str
    filename:  str
    file_type: str = ""      # ".pdf"; derived from filename when empty
    size:      int = 0

    def __post_init__(self) -> None:
        self.file_type = normalize_extension(self.file_type or self.filename)


@dataclass
class WorkerOutcome:
    source:             SourceFile
    result:             AnalysisResult | None = None
    error:              str | None = None
    error_code:         str | None = None
    processing_time_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.result is not None


class FileProcessingWorker:
    """
    Stateless between calls; safe to reuse across the files of a batch.

    Usage::

        worker = FileProcessingWorker(gateway, DocumentTypeAnalyzer(ocr_service))
        outcome = await worker.process(SourceFile(path, "report.pdf"), options)
    """

    def __init__(
        self,
        gateway:    AIProviderGateway,
        analyzer:   DocumentTypeAnalyzer | None   = None,
        selector:   ModelSelectionStrategy | None = None,
        ocr_config: OCRConfig = DEFAULT_OCR_CONFIG,
    ) -> None:
        self._gateway    = gateway
        self._analyzer   = analyzer or DocumentTypeAnalyzer()
        self._selector   = selector or ModelSelectionStrategy()
        self._ocr_config = ocr_config

    async def process(self, source: SourceFile, options: AnalysisOptions) -> WorkerOutcome:
        t0 = time.perf_counter()
        ocr_config = self._ocr_config.with_overrides(min_confidence=options.ocr_confidence)

        # 1. Raw analysis
        try:
            data = await _read_bytes(source.path)
            raw = await self._analyzer.analyze(data, source.filename, source.file_type, ocr_config)
        except DocumentAnalyzerError as exc:
            return self._failure(source, exc.message, exc.error_code, t0)
        except OSError as exc:
            return self._failure(source, f"Could not read {source.filename}: {exc}", "FILE_READ_ERROR", t0)

        result = AnalysisResult(
            filename  = source.filename,
            file_type = source.file_type,
            file_size = source.size or len(data),
            file_hash = hashlib.md5(data, usedforsecurity=False).hexdigest(),
            raw       = raw,
        )

        # 2. AI enrichment
        if options.use_ai:
            result.ai_invoked = True
            profile = DocumentProfile(
                document_type   = options.document_type,
                ocr_confidence  = _ocr_confidence(raw, options),
                strategy        = options.strategy,
                priority        = options.priority,
                document_length = len(raw.full_text),
            )
            selection = self._selector.select(profile)
            result.model_selection = selection.to_dict()
            result.ai = await self._enrich(raw, source, selection.model, min(selection.max_tokens, options.max_tokens), options)

        # 3. Merge
        result.processing_time_ms = round((time.perf_counter() - t0) * 1000, 2)
        logger.info(
            "Worker | file=%s type=%s words=%d ai=%s elapsed_ms=%.1f",
            source.filename, source.file_type, raw.statistics.total_words,
            "yes" if result.ai else "no", result.processing_time_ms,
        )
        return WorkerOutcome(source=source, result=result, processing_time_ms=result.processing_time_ms)

    async def _enrich(
        self,
        raw:        RawAnalysis,
        source:     SourceFile,
        model:      str,
        max_tokens: int,
        options:    AnalysisOptions,
    ) -> AiAnalysis | None:
        try:
            return await self._gateway.analyze(
                raw.full_text,
                source.file_type,
                model,
                max_tokens=max_tokens,
                analysis_type=options.ai_analysis_type,
            )
        except Exception as exc:
            # the raw analysis stands on its own
            logger.warning("Worker | file=%s AI stage failed, continuing without it: %s", source.filename, exc)
            return None

    @staticmethod
    def _failure(source: SourceFile, message: str, code: str, t0: float) -> WorkerOutcome:
        elapsed = round((time.perf_counter() - t0) * 1000, 2)
        logger.warning("Worker | file=%s failed code=%s: %s", source.filename, code, message)
        return WorkerOutcome(source=source, error=message, error_code=code, processing_time_ms=elapsed)


async def _read_bytes(path: str) -> bytes:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, Path(path).read_bytes)


def _ocr_confidence(raw: RawAnalysis, options: AnalysisOptions) -> int:
    """Measured OCR confidence when OCR ran, else the requested threshold."""
    if raw.ocr is not None:
        return int(round(raw.ocr.confidence))
    return options.ocr_confidence
