"""
Document Processing Package
════════════════════════════

Turns uploaded bytes into a RawAnalysis:

  Dispatch by extension → Parse (PyMuPDF / OOXML / text) → OCR if scanned → Text analysis

Modules
───────
  extractor.py      DocumentTypeAnalyzer: extension → extractor dispatch
  parsers.py        PdfExtractor, PptxExtractor, TxtExtractor
  ocr.py            OCRConfig and the Tesseract OCR service
  text_analysis.py  keywords, language, readability, entities, structure

Design principles
─────────────────
  • Extractors are stateless; OCR settings travel as an explicit OCRConfig.
  • Only unreadable input raises (ExtractionError); empty input is zeroed.
  • Blocking parsers run in the thread executor, never on the event loop.
"""

from docanalyzer.processing.extractor import DocumentTypeAnalyzer
from docanalyzer.processing.ocr import DEFAULT_OCR_CONFIG, BaseOCRService, OCRConfig, OCRResult, TesseractOCRService

__all__ = [
    "DEFAULT_OCR_CONFIG",
    "BaseOCRService",
    "DocumentTypeAnalyzer",
    "OCRConfig",
    "OCRResult",
    "TesseractOCRService",
]
