"""
OCR Service  —  Text from Scanned PDF Pages
════════════════════════════════════════════

Used only when a PDF's native text layer is sparse (see
MIN_CHARS_PER_PAGE_THRESHOLD); the PDF extractor decides, this module reads.

  BaseOCRService.extract_pdf(pdf_bytes, config)
      │
      ├── render pages to PNG with PyMuPDF   (thread executor)
      │
      └── extract(page_images, config)       (backend specific)
              TesseractOCRService: pytesseract.image_to_data + Pillow

Configuration is an explicit OCRConfig value passed down the call chain
(coordinator → worker → extractor → here).  DEFAULT_OCR_CONFIG is built from
settings once; per-request values are applied with OCRConfig.with_overrides().

Services never raise for OCR problems: a failed run returns an OCRResult
with `error` set and the caller keeps the PDF's own text layer.
"""

from __future__ import annotations

import asyncio
import io
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace

from docanalyzer.core.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

# If average extracted chars per page is below this threshold,
# the document is classified as scanned / image-based.
MIN_CHARS_PER_PAGE_THRESHOLD = 50

# Prevents a pathological document from stalling a request
OCR_TIMEOUT_SECONDS = 120

# Tesseract word confidences below this are noise (-1 marks non-word boxes)
MIN_WORD_CONFIDENCE = 10


@dataclass(frozen=True)
class OCRConfig:
    """
    enabled         run OCR on sparse PDFs at all
    language        Tesseract language codes, e.g. "eng+spa"
    dpi             page render resolution
    min_confidence  0-100; results below it are flagged low_confidence
    max_pages       pages rendered per document
    """
    enabled:        bool = True
    language:       str  = "eng+spa"
    dpi:            int  = 200
    min_confidence: int  = 75
    max_pages:      int  = 50

    def with_overrides(self, **changes) -> OCRConfig:
        values = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **values) if values else self


DEFAULT_OCR_CONFIG = OCRConfig(
    enabled        = settings.ocr_enabled,
    language       = settings.ocr_language,
    dpi            = settings.ocr_dpi,
    min_confidence = settings.ocr_min_confidence,
)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class OCRResult:
    """
    text        page texts joined with blank lines
    confidence  mean word confidence, 0-100
    pages       pages actually read
    """
    text:        str
    confidence:  float
    pages:       int
    engine:      str
    page_texts:  list[str]  = field(default_factory=list)
    elapsed_ms:  float      = 0.0
    error:       str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and bool(self.text.strip())

    def meets(self, config: OCRConfig) -> bool:
        return self.confidence >= config.min_confidence


# ---------------------------------------------------------------------------
# Abstract service
# ---------------------------------------------------------------------------

class BaseOCRService(ABC):
    """
    Backends implement extract(); page rendering is shared.

    Implementations must be safe for concurrent use (no shared mutable state).
    """

    engine_name: str = "unknown"

    @abstractmethod
    async def extract(self, page_images: list[bytes], config: OCRConfig) -> OCRResult:
        """Read text from PNG-encoded page images. Must not raise."""

    async def extract_pdf(self, pdf_bytes: bytes, config: OCRConfig) -> OCRResult:
        loop = asyncio.get_running_loop()
        try:
            images = await loop.run_in_executor(None, render_pdf_pages, pdf_bytes, config)
        except Exception as exc:
            logger.warning("OCR | page rendering failed engine=%s: %s", self.engine_name, exc)
            return OCRResult(text="", confidence=0.0, pages=0, engine=self.engine_name, error=str(exc))
        return await self.extract(images, config)


def render_pdf_pages(pdf_bytes: bytes, config: OCRConfig) -> list[bytes]:
    """Blocking render of up to config.max_pages pages to PNG bytes."""
    import fitz  # PyMuPDF

    images: list[bytes] = []
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        for page_num, page in enumerate(doc):
            if page_num >= config.max_pages:
                break
            images.append(page.get_pixmap(dpi=config.dpi).tobytes("png"))
    return images


# ---------------------------------------------------------------------------
# Tesseract
# ---------------------------------------------------------------------------

class TesseractOCRService(BaseOCRService):
    """
    Local Tesseract via pytesseract.

    Requires the tesseract binary and the configured language packs in the
    container.  psm 6 treats each page as a uniform block of text.
    """

    engine_name = "tesseract"

    def __init__(self, psm: int = 6) -> None:
        self._psm = psm

    async def extract(self, page_images: list[bytes], config: OCRConfig) -> OCRResult:
        loop = asyncio.get_running_loop()
        t0 = time.monotonic()

        try:
            result = await asyncio.wait_for(
                loop.run_in_executor(None, self._extract_sync, page_images, config),
                timeout=OCR_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.error("Tesseract OCR timed out after %ds", OCR_TIMEOUT_SECONDS)
            result = OCRResult(
                text="", confidence=0.0, pages=0, engine=self.engine_name,
                error=f"timed out after {OCR_TIMEOUT_SECONDS}s",
            )
        except Exception as exc:
            logger.error("Tesseract OCR failed: %s", exc, exc_info=True)
            result = OCRResult(text="", confidence=0.0, pages=0, engine=self.engine_name, error=str(exc))

        result.elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "Tesseract | pages=%d chars=%d confidence=%.1f elapsed_ms=%.0f",
            result.pages, len(result.text), result.confidence, result.elapsed_ms,
        )
        return result

    def _extract_sync(self, page_images: list[bytes], config: OCRConfig) -> OCRResult:
        """Blocking OCR — runs in thread executor."""
        import pytesseract
        from PIL import Image

        page_texts: list[str] = []
        confidences: list[float] = []

        for png in page_images:
            with Image.open(io.BytesIO(png)) as img:
                data = pytesseract.image_to_data(
                    img,
                    lang=config.language,
                    config=f"--psm {self._psm}",
                    output_type=pytesseract.Output.DICT,
                )

            lines: dict[tuple[int, int, int], list[str]] = {}
            for i, word in enumerate(data["text"]):
                word = word.strip()
                conf = float(data["conf"][i])
                if not word or conf < MIN_WORD_CONFIDENCE:
                    continue
                confidences.append(conf)
                key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
                lines.setdefault(key, []).append(word)

            page_texts.append("\n".join(" ".join(words) for _, words in sorted(lines.items())))

        mean_conf = sum(confidences) / len(confidences) if confidences else 0.0
        return OCRResult(
            text       = "\n\n".join(t for t in page_texts if t.strip()),
            confidence = round(mean_conf, 2),
            pages      = len(page_images),
            engine     = self.engine_name,
            page_texts = page_texts,
        )
