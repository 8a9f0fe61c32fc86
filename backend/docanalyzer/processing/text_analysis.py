"""
Shared text analysis used by every extractor and by the AI fallbacks.

All functions are pure and accept any string, including "" (zeroed output).
Tokenisation is deliberately simple: whitespace words, sentences split on
. ! ?, paragraphs split on blank lines.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Any

from docanalyzer.schemas.analysis import AdvancedAnalysis

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
_NON_WORD = re.compile(r"[^\w]")

_EMAIL = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_URL = re.compile(r"\bhttps?://[^\s]+")
_PHONE = re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b")
_DATE = re.compile(r"\b\d{1,2}[/-]\d{1,2}[/-]\d{2,4}\b")
_NUMBER = re.compile(r"\b\d+(?:[.,]\d+)?\b")

_HEADER_LINE = re.compile(r"^[A-ZÁÉÍÓÚÑ\s\d.\-()]+$")
_LIST_LINE = re.compile(r"^\s*(?:[-*•]\s+|\d+[.)]\s+)")
_FOOTER_LINE = re.compile(r"^(?:page|página|pag\.?)?\s*\d+(?:\s*(?:/|of|de)\s*\d+)?$", re.IGNORECASE)
_TABLE_LINE = re.compile(r"\t|\|.*\||\S {3,}\S.* {3,}\S")

SPANISH_MARKERS = frozenset({
    "el", "la", "de", "que", "y", "en", "un", "es", "se", "no", "te", "lo",
    "le", "da", "su", "por", "son", "con", "para", "al", "del", "los", "las",
})
ENGLISH_MARKERS = frozenset({
    "the", "be", "to", "of", "and", "in", "that", "have", "i", "it", "for",
    "not", "on", "with", "he", "as", "you", "do", "at",
})

STOP_WORDS = SPANISH_MARKERS | ENGLISH_MARKERS | frozenset({
    "a", "an", "are", "was", "were", "is", "this", "these", "those", "from",
    "by", "or", "but", "if", "so", "than", "then", "there", "their", "they",
    "we", "our", "your", "its", "can", "will", "would", "should", "has", "had",
    "una", "unos", "unas", "como", "más", "pero", "sus", "este", "esta",
    "estos", "estas", "entre", "sobre", "también", "fue", "ser", "han",
})

POSITIVE_WORDS = frozenset({
    "bueno", "buena", "excelente", "genial", "fantástico", "maravilloso",
    "éxito", "mejor", "good", "great", "excellent", "fantastic", "wonderful",
    "success", "successful", "improve", "improved", "positive", "benefit",
})
NEGATIVE_WORDS = frozenset({
    "malo", "mala", "terrible", "horrible", "pésimo", "peor", "fracaso",
    "problema", "awful", "bad", "worst", "poor", "failure", "failed",
    "problem", "risk", "negative", "loss",
})


# ---------------------------------------------------------------------------
# Tokenisation
# ---------------------------------------------------------------------------

def split_words(text: str) -> list[str]:
    return text.split()


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]


def split_paragraphs(text: str) -> list[str]:
    return [p.strip() for p in _PARAGRAPH_SPLIT.split(text) if p.strip()]


def clean_words(text: str) -> list[str]:
    """Lower-cased words with punctuation stripped; empty tokens dropped."""
    words = (_NON_WORD.sub("", w.lower()) for w in split_words(text))
    return [w for w in words if w]


# ---------------------------------------------------------------------------
# Counts
# ---------------------------------------------------------------------------

def basic_counts(text: str) -> dict[str, Any]:
    words = split_words(text)
    sentences = split_sentences(text)
    lines = text.splitlines() if text else []
    return {
        "totalWords":      len(words),
        "totalCharacters": len(text),
        "totalLines":      len(lines),
        "totalSentences":  len(sentences),
        "totalParagraphs": len(split_paragraphs(text)),
        "nonSpaceCharacters": len(re.sub(r"\s", "", text)),
        "averageWordsPerSentence": round(len(words) / len(sentences), 2) if sentences else 0.0,
    }


def file_size_block(size_bytes: int) -> dict[str, Any]:
    return {
        "bytes": size_bytes,
        "kb":    round(size_bytes / 1024, 2),
        "mb":    round(size_bytes / (1024 * 1024), 2),
    }


# ---------------------------------------------------------------------------
# Linguistic features
# ---------------------------------------------------------------------------

def extract_keywords(text: str, limit: int = 20) -> list[dict[str, Any]]:
    counts = Counter(w for w in clean_words(text) if len(w) > 2 and w not in STOP_WORDS)
    return [{"word": w, "count": c} for w, c in counts.most_common(limit)]


def extract_phrases(text: str, limit: int = 10) -> list[dict[str, Any]]:
    """Two-word phrases that occur more than once, stop words excluded."""
    words = [w for w in clean_words(text) if w not in STOP_WORDS and len(w) > 2]
    counts = Counter(f"{a} {b}" for a, b in zip(words, words[1:]))
    return [{"phrase": p, "count": c} for p, c in counts.most_common(limit) if c > 1]


def extract_topics(text: str, limit: int = 10) -> list[dict[str, Any]]:
    counts = Counter(w for w in clean_words(text) if len(w) > 4)
    return [{"topic": w, "relevance": c} for w, c in counts.most_common(limit)]


def detect_language(text: str) -> str:
    words = clean_words(text)
    spanish = sum(1 for w in words if w in SPANISH_MARKERS)
    english = sum(1 for w in words if w in ENGLISH_MARKERS)
    if spanish > english:
        return "es"
    if english > spanish:
        return "en"
    return "unknown"


def count_syllables(text: str) -> int:
    letters = re.sub(r"[^a-záéíóúñü]", "", text.lower())
    if not letters:
        return 0
    return len(re.findall(r"[aeiouyáéíóúü]+", letters)) or 1


def readability_score(text: str) -> float:
    """Flesch reading ease, clamped to 0-100; 0 for empty text."""
    words = split_words(text)
    sentences = split_sentences(text)
    if not words or not sentences:
        return 0.0
    syllables = count_syllables(text)
    score = 206.835 - 1.015 * (len(words) / len(sentences)) - 84.6 * (syllables / len(words))
    return float(max(0, min(100, round(score))))


def extract_entities(text: str) -> dict[str, list[str]]:
    return {
        "emails":  _EMAIL.findall(text),
        "urls":    _URL.findall(text),
        "phones":  _PHONE.findall(text),
        "dates":   _DATE.findall(text),
        "numbers": _NUMBER.findall(text)[:100],
    }


def polarity_sentiment(text: str) -> dict[str, Any]:
    words = clean_words(text)
    positive = sum(1 for w in words if w in POSITIVE_WORDS)
    negative = sum(1 for w in words if w in NEGATIVE_WORDS)

    sentiment = "neutral"
    if positive > negative:
        sentiment = "positive"
    elif negative > positive:
        sentiment = "negative"

    confidence = min(0.9, (positive + negative) / len(words) * 10) if words else 0.0
    return {
        "sentiment":     sentiment,
        "confidence":    round(confidence, 3),
        "positiveWords": positive,
        "negativeWords": negative,
    }


def complexity(text: str) -> str:
    words = split_words(text)
    sentences = split_sentences(text)
    per_sentence = len(words) / len(sentences) if sentences else 0
    if per_sentence < 10:
        return "simple"
    if per_sentence < 20:
        return "moderate"
    return "complex"


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------

def detect_structure(text: str) -> dict[str, Any]:
    lines = [line.strip() for line in text.splitlines() if line.strip()]

    headers = [
        line for line in lines
        if len(line) < 100 and _HEADER_LINE.match(line)
        and not line.endswith(".") and any(c.isalpha() for c in line)
    ]
    list_items = [line for line in lines if _LIST_LINE.match(line)]
    footers = [line for line in lines if _FOOTER_LINE.match(line)]
    table_rows = [line for line in text.splitlines() if _TABLE_LINE.search(line)]
    paragraphs = split_paragraphs(text)

    if headers and list_items:
        structure_type = "structured_document"
    elif headers:
        structure_type = "formatted_text"
    elif list_items:
        structure_type = "list_based"
    elif len(paragraphs) > 3:
        structure_type = "narrative"
    else:
        structure_type = "simple_text"

    return {
        "hasHeaders":     bool(headers),
        "hasLists":       bool(list_items),
        "hasParagraphs":  len(paragraphs) > 1,
        "hasTables":      len(table_rows) >= 2,
        "hasFooters":     bool(footers),
        "headerCount":    len(headers),
        "listItemCount":  len(list_items),
        "paragraphCount": len(paragraphs),
        "headers":        headers[:20],
        "structureType":  structure_type,
    }


def analyze_text(text: str) -> AdvancedAnalysis:
    """Full linguistic pass; the `advanced` block of RawAnalysis."""
    entities = extract_entities(text)
    numbers: list[float] = []
    for raw in entities["numbers"][:50]:
        try:
            numbers.append(float(raw.replace(",", ".")))
        except ValueError:
            continue

    return AdvancedAnalysis(
        keywords          = extract_keywords(text),
        phrases           = extract_phrases(text),
        language          = detect_language(text),
        readability_score = readability_score(text),
        entities          = entities,
        sentiment         = polarity_sentiment(text),
        complexity        = complexity(text),
        topics            = extract_topics(text),
        numbers           = numbers,
        emails            = entities["emails"],
        urls              = entities["urls"],
        dates             = entities["dates"],
    )
