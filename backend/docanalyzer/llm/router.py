"""
Model Selection Strategy — Model + Parameters by Document Profile

Answers: "Which Groq model, at what temperature and token budget, should
analyse this document?"

Selection axes:

  1. Strategy tag (caller supplied):
       SPEED          → llama-3.1-8b-instant, always
       ACCURACY       → mixtral-8x7b-32768, always
       OCR_OPTIMIZED  → by OCR confidence band only
       AUTO           → document length first, then OCR band, then type/priority;
                        the balanced default is settings.ai_default_model

  2. Document type (general, legal, medical ...):
       sets the base temperature / max tokens; strategy then scales max tokens.

  3. OCR confidence (0-100):
       low-confidence text goes to the more tolerant models.

Design principles:
  - Pure Python (no I/O, no network). Same input → same ModelSelection.
  - Never raises for unknown tags: they fall back to auto / balanced / general
    and the fallback is recorded in ModelSelection.reasoning.
  - build_llm() returns the LangChain chat model; the gateway calls .ainvoke().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel

from docanalyzer.core.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class SelectionStrategy(str, Enum):
    AUTO          = "auto"
    SPEED         = "speed"
    ACCURACY      = "accuracy"
    OCR_OPTIMIZED = "ocr_optimized"


class Priority(str, Enum):
    BALANCED = "balanced"
    SPEED    = "speed"
    ACCURACY = "accuracy"


# ---------------------------------------------------------------------------
# ModelSpec — metadata for each registered model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ModelSpec:
    """
    Static metadata for one Groq-hosted model.

    default_temperature / default_max_tokens apply when a model is used
    outside a document-type profile (e.g. health checks).
    """
    model_id:            str
    name:                str
    context_window:      int
    default_temperature: float
    default_max_tokens:  int
    provider:            str = "groq"


LLAMA_70B = "llama-3.3-70b-versatile"
MIXTRAL   = "mixtral-8x7b-32768"
LLAMA_8B  = "llama-3.1-8b-instant"

_REGISTERED_MODELS: dict[str, ModelSpec] = {
    LLAMA_70B: ModelSpec(
        model_id            = LLAMA_70B,
        name                = "Llama 3.3 70B Versatile",
        context_window      = 131_072,
        default_temperature = 0.2,
        default_max_tokens  = 1500,
    ),
    MIXTRAL: ModelSpec(
        model_id            = MIXTRAL,
        name                = "Mixtral 8x7B",
        context_window      = 32_768,
        default_temperature = 0.1,
        default_max_tokens  = 2000,
    ),
    LLAMA_8B: ModelSpec(
        model_id            = LLAMA_8B,
        name                = "Llama 3.1 8B Instant",
        context_window      = 131_072,
        default_temperature = 0.2,
        default_max_tokens  = 500,
    ),
}


def get_model_spec(model_id: str) -> ModelSpec | None:
    return _REGISTERED_MODELS.get(model_id)


def default_model() -> str:
    """settings.ai_default_model when it names a registered model, else Llama 3.3 70B."""
    configured = settings.ai_default_model
    if configured in _REGISTERED_MODELS:
        return configured
    logger.warning("ModelSelection | unregistered default model=%s, using %s", configured, LLAMA_70B)
    return LLAMA_70B


# ---------------------------------------------------------------------------
# Document type profiles
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DocumentTypeConfig:
    temperature: float
    max_tokens:  int
    description: str


DOCUMENT_TYPE_CONFIGS: dict[str, DocumentTypeConfig] = {
    "general":   DocumentTypeConfig(0.2, 1500, "General-purpose documents"),
    "business":  DocumentTypeConfig(0.2, 1500, "Reports, proposals, correspondence"),
    "legal":     DocumentTypeConfig(0.1, 2000, "Contracts and legal texts"),
    "medical":   DocumentTypeConfig(0.1, 2000, "Clinical and medical records"),
    "financial": DocumentTypeConfig(0.1, 1000, "Statements and financial reports"),
    "academic":  DocumentTypeConfig(0.3, 2000, "Papers and theses"),
    "technical": DocumentTypeConfig(0.1, 2000, "Manuals and specifications"),
}

# Lower bound (inclusive) of each OCR confidence band, highest first
OCR_CONFIDENCE_LEVELS: list[tuple[str, int]] = [
    ("very_high", 90),
    ("high",      75),
    ("medium",    60),
    ("low",       30),
    ("very_low",  0),
]

SHORT_DOCUMENT_CHARS = 1_000
LONG_DOCUMENT_CHARS  = 24_000


def ocr_confidence_level(confidence: int) -> str:
    for level, lower in OCR_CONFIDENCE_LEVELS:
        if confidence >= lower:
            return level
    return "very_low"


# ---------------------------------------------------------------------------
# Input / output
# ---------------------------------------------------------------------------

@dataclass
class DocumentProfile:
    """What the selector knows about a document."""
    document_type:   str = "general"
    ocr_confidence:  int = 75
    strategy:        str = SelectionStrategy.AUTO.value
    priority:        str = Priority.BALANCED.value
    document_length: int = 1_500


@dataclass
class ModelSelection:
    model:          str
    temperature:    float
    max_tokens:     int
    reasoning:      str
    strategy:       str
    priority:       str
    document_type:  str
    ocr_confidence: int
    ocr_level:      str
    provider:       str = "groq"
    context_window: int = 0
    fallbacks:      list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "model":       self.model,
            "provider":    self.provider,
            "contextWindow": self.context_window,
            "parameters":  {"temperature": self.temperature, "maxTokens": self.max_tokens},
            "reasoning":   self.reasoning,
            "strategy":    self.strategy,
            "priority":    self.priority,
            "documentType": self.document_type,
            "ocrConfidence": {"value": self.ocr_confidence, "level": self.ocr_level},
        }


# ---------------------------------------------------------------------------
# ModelSelectionStrategy
# ---------------------------------------------------------------------------

class ModelSelectionStrategy:
    """
    Deterministic model picker.  No I/O — fully unit-testable.

    Usage::

        selector  = ModelSelectionStrategy()
        selection = selector.select(DocumentProfile(document_length=500))
        llm       = build_llm(selection.model, selection.temperature, selection.max_tokens)
    """

    def select(self, profile: DocumentProfile) -> ModelSelection:
        notes: list[str] = []

        strategy = _coerce(SelectionStrategy, profile.strategy, SelectionStrategy.AUTO, "strategy", notes)
        priority = _coerce(Priority, profile.priority, Priority.BALANCED, "priority", notes)

        doc_type = (profile.document_type or "general").lower()
        if doc_type not in DOCUMENT_TYPE_CONFIGS:
            notes.append(f"unknown document type '{profile.document_type}', using 'general'")
            doc_type = "general"
        type_config = DOCUMENT_TYPE_CONFIGS[doc_type]

        ocr = max(0, min(100, int(profile.ocr_confidence)))
        length = max(0, int(profile.document_length))

        model, why = self._pick_model(strategy, priority, doc_type, ocr, length)
        max_tokens = _scale_max_tokens(type_config.max_tokens, strategy)

        spec = _REGISTERED_MODELS[model]
        reasoning = "; ".join([why, *notes]) if notes else why
        selection = ModelSelection(
            model          = model,
            temperature    = type_config.temperature,
            max_tokens     = max_tokens,
            reasoning      = reasoning,
            strategy       = strategy.value,
            priority       = priority.value,
            document_type  = doc_type,
            ocr_confidence = ocr,
            ocr_level      = ocr_confidence_level(ocr),
            provider       = spec.provider,
            context_window = spec.context_window,
            fallbacks      = notes,
        )

        logger.info(
            "ModelSelection | model=%s strategy=%s priority=%s type=%s ocr=%d length=%d",
            model, strategy.value, priority.value, doc_type, ocr, length,
        )
        return selection

    @staticmethod
    def _pick_model(
        strategy: SelectionStrategy,
        priority: Priority,
        doc_type: str,
        ocr: int,
        length: int,
    ) -> tuple[str, str]:
        if strategy == SelectionStrategy.SPEED:
            return LLAMA_8B, "speed strategy: fastest model"

        if strategy == SelectionStrategy.ACCURACY:
            return MIXTRAL, "accuracy strategy: most precise model"

        if strategy == SelectionStrategy.OCR_OPTIMIZED:
            if ocr < 60:
                return MIXTRAL, f"ocr_optimized: low OCR confidence ({ocr}%)"
            if ocr < 80:
                return LLAMA_70B, f"ocr_optimized: medium OCR confidence ({ocr}%)"
            return LLAMA_70B, f"ocr_optimized: high OCR confidence ({ocr}%)"

        # AUTO: length, then OCR band, then document type and priority
        if length < SHORT_DOCUMENT_CHARS:
            return LLAMA_8B, f"auto: short document ({length} chars)"
        if length > LONG_DOCUMENT_CHARS:
            return LLAMA_70B, f"auto: long document ({length} chars) needs large context"
        if ocr < 70:
            return MIXTRAL, f"auto: low OCR confidence ({ocr}%)"
        if ocr < 85:
            return LLAMA_70B, f"auto: medium OCR confidence ({ocr}%)"
        if doc_type in ("legal", "medical"):
            return MIXTRAL, f"auto: {doc_type} document needs precision"
        if priority == Priority.SPEED:
            return LLAMA_8B, "auto: speed priority"
        return default_model(), "auto: balanced default"


def _coerce(enum_cls, value, default, label: str, notes: list[str]):
    try:
        return enum_cls((value or default.value).lower())
    except ValueError:
        notes.append(f"unknown {label} '{value}', falling back to '{default.value}'")
        return default


def _scale_max_tokens(base: int, strategy: SelectionStrategy) -> int:
    if strategy == SelectionStrategy.ACCURACY:
        return min(int(base * 1.5), 8000)
    if strategy == SelectionStrategy.SPEED:
        return max(int(base * 0.7), 500)
    if strategy == SelectionStrategy.OCR_OPTIMIZED:
        return min(int(base * 1.2), 6000)
    return base


# ---------------------------------------------------------------------------
# LangChain model builder
# ---------------------------------------------------------------------------

def build_llm(model: str, temperature: float, max_tokens: int) -> BaseChatModel:
    """
    Instantiate a ChatOpenAI client pointed at Groq's OpenAI-compatible API.

    max_retries=0: the gateway owns timeouts and degrades to fallbacks.
    """
    from langchain_openai import ChatOpenAI
    return ChatOpenAI(
        model=model,
        api_key=settings.groq_api_key or "not-configured",
        base_url=settings.groq_base_url,
        temperature=temperature,
        max_tokens=max_tokens,
        max_retries=0,
    )
