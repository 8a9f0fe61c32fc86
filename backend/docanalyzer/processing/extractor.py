"""
Document Type Analyzer
══════════════════════

Dispatches a file to the extractor registered for its extension and
returns the normalized RawAnalysis.

  ┌──────────────────────────────────────────────────────────────┐
  │  .pdf   → PdfExtractor   (PyMuPDF, OCR service when sparse)  │
  │  .pptx  → PptxExtractor  (zipfile + ElementTree)             │
  │  .txt   → TxtExtractor                                       │
  │  other  → ExtractionError(UNSUPPORTED_FILE_TYPE)             │
  └──────────────────────────────────────────────────────────────┘

This module is the only place that maps extensions to extractors.
The worker only sees RawAnalysis or ExtractionError.
"""

from __future__ import annotations

import logging
from pathlib import PurePath

from docanalyzer.core.errors import ExtractionError
from docanalyzer.processing.ocr import DEFAULT_OCR_CONFIG, BaseOCRService, OCRConfig
from docanalyzer.processing.parsers import (
    BaseDocumentExtractor,
    PdfExtractor,
    PptxExtractor,
    TxtExtractor,
)
from docanalyzer.schemas.analysis import RawAnalysis

logger = logging.getLogger(__name__)


def normalize_extension(filename_or_ext: str) -> str:
    """'Report.PDF' → '.pdf'; '.pptx' → '.pptx'; 'txt' → '.txt'."""
    value = filename_or_ext.strip().lower()
    suffix = PurePath(value).suffix
    if suffix:
        return suffix
    return value if value.startswith(".") else f".{value}"


class DocumentTypeAnalyzer:
    """
    Stateless dispatcher.

    Usage::

        analyzer = DocumentTypeAnalyzer(ocr_service=TesseractOCRService())
        raw = await analyzer.analyze(data, "report.pdf", ".pdf", ocr_config)
    """

    def __init__(
        self,
        ocr_service: BaseOCRService | None = None,
        extractors:  list[BaseDocumentExtractor] | None = None,
    ) -> None:
        registered = extractors or [PdfExtractor(ocr_service), PptxExtractor(), TxtExtractor()]
        self._by_extension: dict[str, BaseDocumentExtractor] = {}
        for extractor in registered:
            for ext in extractor.extensions:
                self._by_extension[ext] = extractor

    @property
    def supported_extensions(self) -> frozenset[str]:
        return frozenset(self._by_extension)

    def supports(self, file_type: str) -> bool:
        return normalize_extension(file_type) in self._by_extension

    async def analyze(
        self,
        data:       bytes,
        filename:   str,
        file_type:  str | None = None,
        ocr_config: OCRConfig  = DEFAULT_OCR_CONFIG,
    ) -> RawAnalysis:
        ext = normalize_extension(file_type or filename)
        extractor = self._by_extension.get(ext)
        if extractor is None:
            raise ExtractionError(
                f"Unsupported file type '{ext}' for {filename}",
                error_code="UNSUPPORTED_FILE_TYPE",
            )

        logger.debug("DocumentTypeAnalyzer | file=%s ext=%s extractor=%s", filename, ext, type(extractor).__name__)
        return await extractor.extract(data, filename, ocr_config)
