"""
Type-Specific Extractors  —  bytes → RawAnalysis
════════════════════════════════════════════════

  PdfExtractor   PyMuPDF text layer; OCR for sparse (scanned) documents
  PptxExtractor  Office Open XML package read with zipfile + ElementTree
  TxtExtractor   UTF-8 decode with replacement characters

Contract shared by all three:
  - well-formed but empty input (blank pages, no slides, empty file)
    returns zeroed statistics and advanced=None
  - unreadable input raises ExtractionError; nothing else is raised
  - blocking parsing runs in the default thread executor
"""

from __future__ import annotations

import asyncio
import io
import logging
import re
import time
import xml.etree.ElementTree as ET
import zipfile
import zlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any

from docanalyzer.core.errors import ExtractionError
from docanalyzer.processing import text_analysis as ta
from docanalyzer.processing.ocr import (
    MIN_CHARS_PER_PAGE_THRESHOLD,
    BaseOCRService,
    OCRConfig,
)
from docanalyzer.schemas.analysis import DocumentStatistics, OcrBlock, RawAnalysis

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Shared assembly
# ---------------------------------------------------------------------------

def _statistics(text: str, size_bytes: int, units: int, *, slides: bool = False) -> DocumentStatistics:
    counts = ta.basic_counts(text)
    return DocumentStatistics(
        total_pages            = None if slides else units,
        total_slides           = units if slides else None,
        total_words            = counts["totalWords"],
        total_characters       = counts["totalCharacters"],
        total_lines            = counts["totalLines"],
        total_sentences        = counts["totalSentences"],
        average_words_per_page = round(counts["totalWords"] / units, 2) if units else 0.0,
        file_size              = ta.file_size_block(size_bytes),
    )


def _content(text: str) -> dict[str, Any]:
    return {
        "fullText":   text,
        "cleanText":  re.sub(r"\s+", " ", text).strip(),
        "paragraphs": ta.split_paragraphs(text)[:200],
        "sentenceCount":  len(ta.split_sentences(text)),
        "paragraphCount": len(ta.split_paragraphs(text)),
    }


def _advanced(text: str):
    return ta.analyze_text(text) if ta.split_words(text) else None


def _title_from_filename(filename: str) -> str:
    stem = PurePath(filename).stem
    return re.sub(r"[-_]+", " ", stem).strip() or filename


class BaseDocumentExtractor(ABC):
    """One extractor per supported extension."""

    extensions: tuple[str, ...] = ()

    @abstractmethod
    async def extract(self, data: bytes, filename: str, ocr_config: OCRConfig) -> RawAnalysis:
        """Parse `data`; raise ExtractionError only for unreadable input."""


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------

@dataclass
class _PdfRead:
    pages:     list[str]
    metadata:  dict[str, Any]
    technical: dict[str, Any]
    has_images: bool = False

    @property
    def text(self) -> str:
        return "\n\n".join(p for p in self.pages if p.strip())

    def is_likely_scanned(self) -> bool:
        if not self.pages:
            return False
        return sum(len(p) for p in self.pages) / len(self.pages) < MIN_CHARS_PER_PAGE_THRESHOLD


class PdfExtractor(BaseDocumentExtractor):
    """
    PyMuPDF text layer first; when the average text per page is below
    MIN_CHARS_PER_PAGE_THRESHOLD and OCR is enabled, the OCR service reads
    rendered pages and its text replaces the sparse layer.
    """

    extensions = (".pdf",)

    def __init__(self, ocr_service: BaseOCRService | None = None) -> None:
        self._ocr = ocr_service

    async def extract(self, data: bytes, filename: str, ocr_config: OCRConfig) -> RawAnalysis:
        loop = asyncio.get_running_loop()
        t0 = time.monotonic()
        read = await loop.run_in_executor(None, self._read_sync, data)

        text = read.text
        ocr_block: OcrBlock | None = None

        if read.is_likely_scanned() and ocr_config.enabled and self._ocr is not None:
            ocr_result = await self._ocr.extract_pdf(data, ocr_config)
            if ocr_result.succeeded:
                text = ocr_result.text
                ocr_block = OcrBlock(
                    text       = ocr_result.text,
                    confidence = ocr_result.confidence,
                    pages      = ocr_result.pages,
                    engine     = ocr_result.engine,
                )
                if not ocr_result.meets(ocr_config):
                    logger.warning(
                        "PdfExtractor | low OCR confidence file=%s confidence=%.1f min=%d",
                        filename, ocr_result.confidence, ocr_config.min_confidence,
                    )
            else:
                logger.warning(
                    "PdfExtractor | OCR produced no text, keeping text layer file=%s error=%s",
                    filename, ocr_result.error,
                )

        structure = ta.detect_structure(text)
        structure["hasImages"] = read.has_images

        raw = RawAnalysis(
            document_info = {
                "title":            read.metadata.get("title") or _title_from_filename(filename),
                "author":           read.metadata.get("author") or "Unknown",
                "subject":          read.metadata.get("subject") or "",
                "creator":          read.metadata.get("creator") or "",
                "producer":         read.metadata.get("producer") or "",
                "keywords":         read.metadata.get("keywords") or "",
                "creationDate":     read.metadata.get("creationDate") or "",
                "modificationDate": read.metadata.get("modDate") or "",
            },
            statistics = _statistics(text, len(data), len(read.pages)),
            content    = {
                **_content(text),
                "textByPage": [
                    {"page": i, "text": page, "wordCount": len(page.split())}
                    for i, page in enumerate(read.pages, start=1)
                ],
            },
            structure  = structure,
            advanced   = _advanced(text),
            ocr        = ocr_block,
            technical  = read.technical,
        )

        logger.info(
            "PdfExtractor | file=%s pages=%d words=%d ocr=%s elapsed_ms=%.0f",
            filename, len(read.pages), raw.statistics.total_words,
            ocr_block is not None, (time.monotonic() - t0) * 1000,
        )
        return raw

    @staticmethod
    def _read_sync(data: bytes) -> _PdfRead:
        """Blocking PyMuPDF read — runs in thread executor."""
        import fitz  # PyMuPDF; imported here to avoid module-level import cost

        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:
            raise ExtractionError(f"Unreadable PDF: {exc}") from exc

        with doc:
            if doc.needs_pass:
                raise ExtractionError("PDF is password protected")
            try:
                pages = [(page.get_text("text") or "").strip() for page in doc]
                has_images = any(page.get_images() for page in doc)
            except Exception as exc:
                raise ExtractionError(f"Corrupt PDF content: {exc}") from exc

            metadata = dict(doc.metadata or {})
            technical = {
                "pdfVersion":  metadata.get("format", ""),
                "isEncrypted": bool(doc.is_encrypted),
                "formFields":  bool(doc.is_form_pdf),
                "pageCount":   doc.page_count,
            }

        return _PdfRead(pages=pages, metadata=metadata, technical=technical, has_images=has_images)


# ---------------------------------------------------------------------------
# PPTX
# ---------------------------------------------------------------------------

_SLIDE_PATH = re.compile(r"^ppt/slides/slide(\d+)\.xml$")
_NOTES_PATH = "ppt/notesSlides/notesSlide{n}.xml"

_ACTION_LINE = re.compile(
    r"\b(action|todo|to do|next steps?|follow[- ]up|deadline|responsible|acción|pendiente|próximos pasos)\b",
    re.IGNORECASE,
)
_CONCLUSION_LINE = re.compile(
    r"\b(conclusion|conclusions|summary|in summary|takeaways?|conclusión|conclusiones|resumen)\b",
    re.IGNORECASE,
)


@dataclass
class _Slide:
    number:     int
    texts:      list[str]
    notes:      list[str] = field(default_factory=list)
    has_table:  bool = False
    has_chart:  bool = False
    has_image:  bool = False

    @property
    def title(self) -> str:
        return self.texts[0] if self.texts else ""

    @property
    def text(self) -> str:
        return "\n".join(self.texts)


class PptxExtractor(BaseDocumentExtractor):
    """Slides are read in numeric order from ppt/slides/slideN.xml text runs."""

    extensions = (".pptx",)

    async def extract(self, data: bytes, filename: str, ocr_config: OCRConfig) -> RawAnalysis:
        loop = asyncio.get_running_loop()
        slides, warnings = await loop.run_in_executor(None, self._read_sync, data)

        text = "\n\n".join(s.text for s in slides if s.texts)
        lines = [line.strip() for s in slides for line in s.texts if line.strip()]

        structure = ta.detect_structure(text)
        structure.update({
            "hasTitleSlides":  any(len(s.texts) <= 2 and s.texts for s in slides),
            "hasBulletPoints": structure["hasLists"] or any(len(s.texts) > 2 for s in slides),
            "hasTables":       any(s.has_table for s in slides),
            "hasCharts":       any(s.has_chart for s in slides),
            "hasImages":       any(s.has_image for s in slides),
            "hasSpeakerNotes": any(s.notes for s in slides),
            "slides": [
                {"slide": s.number, "title": s.title, "wordCount": len(s.text.split())}
                for s in slides
            ],
        })

        raw = RawAnalysis(
            document_info = {
                "title":    slides[0].title if slides and slides[0].title else _title_from_filename(filename),
                "author":   "Unknown",
                "subject":  "",
                "creator":  "",
                "keywords": "",
            },
            statistics   = _statistics(text, len(data), len(slides), slides=True),
            content      = {
                **_content(text),
                "slides": [{"slide": s.number, "text": s.text, "notes": s.notes} for s in slides],
            },
            structure    = structure,
            advanced     = _advanced(text),
            presentation = {
                "slideTitles": [s.title for s in slides if s.title],
                "keyTopics":   [t["topic"] for t in ta.extract_topics(text, limit=5)],
                "actionItems": [line for line in lines if _ACTION_LINE.search(line)][:10],
                "questions":   [line for line in lines if line.endswith("?")][:10],
                "conclusions": [line for line in lines if _CONCLUSION_LINE.search(line)][:10],
            },
            technical    = {"format": "PPTX", "warnings": warnings},
        )

        logger.info(
            "PptxExtractor | file=%s slides=%d words=%d warnings=%d",
            filename, len(slides), raw.statistics.total_words, len(warnings),
        )
        return raw

    @staticmethod
    def _read_sync(data: bytes) -> tuple[list[_Slide], list[str]]:
        warnings: list[str] = []
        slides: list[_Slide] = []
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                names = archive.namelist()
                if "ppt/presentation.xml" not in names:
                    raise ExtractionError("Not a PowerPoint package (ppt/presentation.xml missing)")

                numbered: list[tuple[int, str]] = []
                for name in names:
                    match = _SLIDE_PATH.match(name)
                    if match:
                        numbered.append((int(match.group(1)), name))

                for number, slide_path in sorted(numbered):
                    try:
                        root = ET.fromstring(archive.read(slide_path))
                    except ET.ParseError:
                        warnings.append(f"Failed to parse slide XML '{slide_path}'")
                        continue

                    slide = _Slide(number=number, texts=_text_runs(root))
                    for node in root.iter():
                        tag = node.tag.rsplit("}", 1)[-1]
                        if tag == "tbl":
                            slide.has_table = True
                        elif tag == "chart":
                            slide.has_chart = True
                        elif tag == "pic":
                            slide.has_image = True

                    notes_path = _NOTES_PATH.format(n=number)
                    if notes_path in names:
                        try:
                            slide.notes = _text_runs(ET.fromstring(archive.read(notes_path)))
                        except ET.ParseError:
                            warnings.append(f"Failed to parse notes XML '{notes_path}'")
                    slides.append(slide)
        except zipfile.BadZipFile as exc:
            raise ExtractionError(f"Unreadable PPTX: invalid ZIP container ({exc})") from exc
        # corrupt deflate stream, truncated entry, encrypted entry
        except (zlib.error, EOFError, RuntimeError) as exc:
            raise ExtractionError(f"Unreadable PPTX: {exc}") from exc

        return slides, warnings


def _text_runs(root: ET.Element) -> list[str]:
    """Text of every a:t run, one entry per paragraph (a:p)."""
    paragraphs: list[str] = []
    for node in root.iter():
        if not node.tag.endswith("}p"):
            continue
        runs = [t.text for t in node.iter() if t.tag.endswith("}t") and t.text]
        joined = "".join(runs).strip()
        if joined:
            paragraphs.append(joined)
    return paragraphs


# ---------------------------------------------------------------------------
# TXT
# ---------------------------------------------------------------------------

class TxtExtractor(BaseDocumentExtractor):
    extensions = (".txt",)

    async def extract(self, data: bytes, filename: str, ocr_config: OCRConfig) -> RawAnalysis:
        text = data.decode("utf-8", errors="replace").lstrip("\ufeff")
        units = 1 if text.strip() else 0
        counts = ta.basic_counts(text)

        stats = _statistics(text, len(data), units)
        raw = RawAnalysis(
            document_info = {
                "title":    _title_from_filename(filename),
                "author":   "Unknown",
                "subject":  "Text document",
                "creator":  "",
                "keywords": "",
                "encoding": "utf-8",
            },
            statistics = stats,
            content    = {
                **_content(text),
                "averageWordsPerSentence": counts["averageWordsPerSentence"],
                "nonSpaceCharacters":      counts["nonSpaceCharacters"],
            },
            structure  = ta.detect_structure(text),
            advanced   = _advanced(text),
        )

        logger.info("TxtExtractor | file=%s words=%d lines=%d", filename, stats.total_words, stats.total_lines)
        return raw
