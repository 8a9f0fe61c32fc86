"""
Facet Fallbacks — Structured-Reply Parsing and Local Heuristics

Providers are asked for strict JSON but are not guaranteed to send only JSON.
Every facet reply goes through one helper:

    parse_structured_reply(raw, fallback) -> same model type as fallback

  1. take the substring between the first "{" and the last "}"
  2. json.loads it
  3. validate it against type(fallback)
  4. anything failing → return `fallback` unchanged

The fallback objects are computed locally from the document text, so the
pipeline always has a well-typed value for every facet:

  sentiment        polarity word counts
  classification   keyword-frequency category matching
  summary          first three sentences
  insights         highest-scoring sentences + numeric data points
  recommendations  keyed by file type
  quality          readability / structure heuristics → grade A-F

Every fallback carries fallback=True; parsed replies carry fallback=False.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from docanalyzer.processing import text_analysis as ta
from docanalyzer.schemas.analysis import (
    ClassificationResult,
    InsightsResult,
    QualityResult,
    RecommendationsResult,
    SentimentResult,
    SummaryResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


# ---------------------------------------------------------------------------
# Reply parsing
# ---------------------------------------------------------------------------

def parse_structured_reply(raw: str | None, fallback: T) -> T:
    """
    Parse a provider reply into the fallback's model type.

    Returns `fallback` itself when no JSON object can be extracted, the
    object names none of the model's fields, or it does not validate.
    Never raises.
    """
    if not raw or not raw.strip():
        return fallback

    text = raw.strip()
    start, end = text.find("{"), text.rfind("}")
    candidate = text[start:end + 1] if start != -1 and end > start else text

    try:
        data = json.loads(candidate)
    except (json.JSONDecodeError, ValueError) as exc:
        logger.warning("ReplyParser | invalid JSON model=%s: %s", type(fallback).__name__, exc)
        return fallback

    if not isinstance(data, dict):
        logger.warning("ReplyParser | JSON is not an object model=%s", type(fallback).__name__)
        return fallback

    data.pop("fallback", None)
    model = type(fallback)
    known = {
        key
        for name, info in model.model_fields.items() if name != "fallback"
        for key in (name, info.alias) if key
    }
    if not data.keys() & known:
        logger.warning("ReplyParser | no facet fields in reply model=%s keys=%s", model.__name__, sorted(data)[:5])
        return fallback

    try:
        parsed = model.model_validate(data)
    except PydanticValidationError as exc:
        logger.warning(
            "ReplyParser | schema mismatch model=%s errors=%d",
            model.__name__, exc.error_count(),
        )
        return fallback

    if "fallback" in type(parsed).model_fields:
        parsed = parsed.model_copy(update={"fallback": False})
    return parsed


# ---------------------------------------------------------------------------
# Sentiment
# ---------------------------------------------------------------------------

def sentiment_fallback(text: str) -> SentimentResult:
    polarity = ta.polarity_sentiment(text)
    hits = polarity["positiveWords"] + polarity["negativeWords"]
    confidence = polarity["confidence"] if hits else 0.5

    return SentimentResult(
        sentiment           = polarity["sentiment"],
        confidence          = confidence,
        emotions            = [polarity["sentiment"]],
        tone                = "formal",
        emotional_intensity = confidence,
        explanation         = (
            f"Heuristic polarity count: {polarity['positiveWords']} positive, "
            f"{polarity['negativeWords']} negative words"
        ),
        fallback            = True,
    )


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

CATEGORY_KEYWORDS: dict[str, frozenset[str]] = {
    "academic":  frozenset({"research", "study", "university", "thesis", "hypothesis", "abstract",
                            "investigación", "estudio", "universidad", "tesis", "metodología"}),
    "business":  frozenset({"market", "customer", "sales", "strategy", "company", "revenue", "client",
                            "mercado", "cliente", "ventas", "estrategia", "empresa", "negocio"}),
    "legal":     frozenset({"contract", "agreement", "clause", "law", "party", "court", "liability",
                            "contrato", "acuerdo", "cláusula", "ley", "tribunal", "legal"}),
    "technical": frozenset({"system", "software", "api", "server", "configuration", "install", "code",
                            "sistema", "servidor", "configuración", "código", "técnico"}),
    "medical":   frozenset({"patient", "diagnosis", "treatment", "clinical", "symptoms", "doctor",
                            "paciente", "diagnóstico", "tratamiento", "clínico", "síntomas", "médico"}),
    "financial": frozenset({"budget", "investment", "profit", "assets", "tax", "financial", "costs",
                            "presupuesto", "inversión", "beneficio", "activos", "impuesto", "financiero"}),
}

_INDUSTRY_BY_CATEGORY = {
    "academic":  "education",
    "technical": "technology",
    "medical":   "healthcare",
    "financial": "finance",
    "legal":     "government",
}


def classification_fallback(text: str, file_type: str = "") -> ClassificationResult:
    words = ta.clean_words(text)
    scores = {
        category: sum(1 for w in words if w in vocabulary)
        for category, vocabulary in CATEGORY_KEYWORDS.items()
    }
    ranked = sorted(((s, c) for c, s in scores.items() if s > 0), reverse=True)
    total_hits = sum(s for s, _ in ranked)

    if ranked:
        best_score, primary = ranked[0]
        secondary = [c for _, c in ranked[1:3]] or ["general"]
        confidence = round(min(0.8, 0.3 + 0.5 * best_score / total_hits), 2)
    else:
        primary, secondary, confidence = "other", ["general"], 0.3

    word_count = len(words)
    if word_count > 3000:
        level = "advanced"
    elif word_count > 300:
        level = "intermediate"
    else:
        level = "basic"

    return ClassificationResult(
        primary_category     = primary,
        secondary_categories = secondary,
        confidence           = confidence,
        audience             = "technical" if primary in ("technical", "medical") else "general",
        purpose              = "informative",
        complexity           = level,
        keywords             = [k["word"] for k in ta.extract_keywords(text, limit=5)],
        industry             = _INDUSTRY_BY_CATEGORY.get(primary, "other"),
        fallback             = True,
    )


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

def summary_fallback(text: str) -> SummaryResult:
    sentences = ta.split_sentences(text)
    summary = ". ".join(sentences[:3]) + "." if sentences else ""
    return SummaryResult(
        summary           = summary,
        word_count        = len(ta.split_words(summary)),
        compression_ratio = round(len(text) / len(summary), 2) if summary else 0.0,
        fallback          = True,
    )


# ---------------------------------------------------------------------------
# Insights
# ---------------------------------------------------------------------------

_ACTION_MARKERS = re.compile(r"\b(should|must|need to|recommend|debe|deben|necesario|recomienda)\b", re.IGNORECASE)
_DATA_POINT = re.compile(r"\d+(?:[.,]\d+)?\s*(?:%|percent|por ciento|usd|eur|\$|€)?", re.IGNORECASE)


def insights_fallback(text: str) -> InsightsResult:
    sentences = ta.split_sentences(text)
    weights = {k["word"]: k["count"] for k in ta.extract_keywords(text)}

    def score(sentence: str) -> int:
        return sum(weights.get(w, 0) for w in ta.clean_words(sentence))

    ranked = sorted(sentences, key=score, reverse=True)
    with_numbers = [s for s in sentences if _DATA_POINT.search(s) and any(ch.isdigit() for ch in s)]

    def polarity_of(sentence: str) -> str:
        return ta.polarity_sentiment(sentence)["sentiment"]

    return InsightsResult(
        main_points   = ranked[:3],
        key_findings  = with_numbers[:3],
        trends        = [],
        risks         = [s for s in sentences if polarity_of(s) == "negative"][:3],
        opportunities = [s for s in sentences if polarity_of(s) == "positive"][:3],
        action_items  = [s for s in sentences if _ACTION_MARKERS.search(s)][:3] or ["Review the document manually"],
        data_points   = [m.group(0).strip() for m in _DATA_POINT.finditer(text)][:5],
        fallback      = True,
    )


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------

_RECOMMENDATIONS_BY_TYPE: dict[str, dict[str, list[str]]] = {
    ".pdf": {
        "improvements":   ["Add a table of contents and consistent headings"],
        "next_steps":     ["Verify extracted text against the original layout"],
        "tools":          ["PDF accessibility checker"],
        "resources":      ["PDF/UA accessibility guidelines"],
        "best_practices": ["Embed a searchable text layer in scanned pages"],
        "considerations": ["Scanned pages depend on OCR quality"],
    },
    ".pptx": {
        "improvements":   ["Give every slide a descriptive title"],
        "next_steps":     ["Add speaker notes for slides with dense content"],
        "tools":          ["Presentation outline view"],
        "resources":      ["Slide design guidelines"],
        "best_practices": ["Keep one key message per slide"],
        "considerations": ["Images and charts are not analysed as text"],
    },
    ".txt": {
        "improvements":   ["Split long passages into titled sections"],
        "next_steps":     ["Convert to a structured format if it will be shared"],
        "tools":          ["Markdown editor"],
        "resources":      ["Plain-language writing guides"],
        "best_practices": ["Use blank lines between paragraphs"],
        "considerations": ["Plain text carries no formatting metadata"],
    },
}

_GENERIC_RECOMMENDATIONS: dict[str, list[str]] = {
    "improvements":   ["Review the content manually"],
    "next_steps":     ["Run the AI analysis again when the provider is available"],
    "tools":          ["Manual review checklist"],
    "resources":      ["Documentation style guide"],
    "best_practices": ["Keep documents concise and well structured"],
    "considerations": ["Recommendations generated without AI"],
}


def recommendations_fallback(file_type: str) -> RecommendationsResult:
    key = file_type.lower() if file_type.startswith(".") else f".{file_type.lower()}"
    values = _RECOMMENDATIONS_BY_TYPE.get(key, _GENERIC_RECOMMENDATIONS)
    return RecommendationsResult(**values, fallback=True)


# ---------------------------------------------------------------------------
# Quality
# ---------------------------------------------------------------------------

_CLARITY_BY_COMPLEXITY = {"simple": 8.0, "moderate": 6.5, "complex": 5.0}


def _clamp(value: float) -> float:
    return round(max(0.0, min(10.0, value)), 1)


def grade_for(score: float) -> str:
    if score >= 8.5:
        return "A"
    if score >= 7.0:
        return "B"
    if score >= 5.5:
        return "C"
    if score >= 4.0:
        return "D"
    return "F"


def quality_fallback(text: str) -> QualityResult:
    structure_info = ta.detect_structure(text)
    word_count = len(ta.split_words(text))

    readability = _clamp(ta.readability_score(text) / 10)
    structure = _clamp(
        4.0
        + 2.0 * structure_info["hasHeaders"]
        + 2.0 * structure_info["hasLists"]
        + 2.0 * structure_info["hasParagraphs"]
    )
    clarity = _clamp(_CLARITY_BY_COMPLEXITY[ta.complexity(text)])
    completeness = _clamp(word_count / 50)
    coherence = _clamp((clarity + structure) / 2)
    accuracy = 5.0

    overall = _clamp((readability + structure + clarity + completeness + coherence + accuracy) / 6)

    strengths: list[str] = []
    weaknesses: list[str] = []
    (strengths if readability >= 6 else weaknesses).append(
        "Readable sentence length" if readability >= 6 else "Hard to read sentences"
    )
    (strengths if structure >= 6 else weaknesses).append(
        "Clear structure" if structure >= 6 else "Little visible structure"
    )
    if completeness < 4:
        weaknesses.append("Very short document")

    return QualityResult(
        overall_score = overall,
        clarity       = clarity,
        coherence     = coherence,
        completeness  = completeness,
        accuracy      = accuracy,
        readability   = readability,
        structure     = structure,
        strengths     = strengths,
        weaknesses    = weaknesses,
        grade         = grade_for(overall),
        fallback      = True,
    )
