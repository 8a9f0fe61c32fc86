"""
AI Provider Gateway — Six-Facet Document Analysis with Per-Facet Fallback

One document's AI stage is a fan-out / fan-in:

  ┌──────────────────────────────────────────────────────────────┐
  │  AIProviderGateway.analyze(text, file_type, model)           │
  │       │                                                      │
  │       ▼                                                      │
  │  truncate to ai_max_input_chars                              │
  │       │                                                      │
  │       ├── sentiment ─────────┐                               │
  │       ├── classification ────┤   asyncio.gather              │
  │       ├── summary ───────────┤   each task: wait_for(timeout)│
  │       ├── insights ──────────┤   error → AIProviderError     │
  │       ├── recommendations ───┤        → facet fallback       │
  │       ├── quality ───────────┤                               │
  │       └── secondary check ───┘   (only when configured)      │
  │       │                                                      │
  │       ▼                                                      │
  │  merge → AiAnalysis (tokens, cost, fallback_facets)          │
  └──────────────────────────────────────────────────────────────┘

No facet failure is visible to the caller as an exception: a failed facet
yields its local heuristic result with fallback=True.  Each task builds its
own FacetOutcome; outcomes are merged only after all tasks settle.

The secondary provider is connectivity-only: nothing is sent to it, so its
verification runs alongside the six facets rather than before them.  Its
ProviderStatus is attached to AiAnalysis.secondary_provider as a capability
flag; an unreachable secondary never delays or blocks the primary calls.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable

import httpx
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel

from docanalyzer.core.config import settings
from docanalyzer.core.errors import AIProviderError
from docanalyzer.llm import fallback as fb
from docanalyzer.llm.connectivity import verify_primary_provider, verify_secondary_provider
from docanalyzer.llm.router import build_llm
from docanalyzer.observability.cost_tracker import UsageTotals, estimate_tokens
from docanalyzer.schemas.analysis import (
    AiAnalysis,
    ClassificationResult,
    InsightsResult,
    ProviderStatus,
    QualityResult,
    RecommendationsResult,
    SentimentResult,
    SummaryResult,
)

logger = logging.getLogger(__name__)

LlmFactory = Callable[[str, float, int], BaseChatModel]
StatusCheck = Callable[[], Awaitable[ProviderStatus]]


# ---------------------------------------------------------------------------
# Facet catalogue
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FacetSpec:
    name:        str
    temperature: float
    max_tokens:  int
    json_reply:  bool = True


FACETS: dict[str, FacetSpec] = {
    "sentiment":       FacetSpec("sentiment",       0.1, 500),
    "classification":  FacetSpec("classification",  0.2, 600),
    "summary":         FacetSpec("summary",         0.3, 300, json_reply=False),
    "insights":        FacetSpec("insights",        0.2, 800),
    "recommendations": FacetSpec("recommendations", 0.3, 600),
    "quality":         FacetSpec("quality",         0.1, 500),
}

FACET_ORDER: tuple[str, ...] = tuple(FACETS)

_JSON_SYSTEM = (
    "You are a document analysis assistant. Reply ONLY with one JSON object "
    "matching the requested shape. No markdown, no commentary."
)
_TEXT_SYSTEM = "You are a document analysis assistant. Reply with plain text only."

_PROMPTS: dict[str, str] = {
    "sentiment": """Analyse the sentiment of the following text. Reply ONLY in JSON:
{
  "sentiment": "positive|negative|neutral",
  "confidence": 0.0-1.0,
  "emotions": ["emotion1", "emotion2"],
  "tone": "formal|informal|professional|casual",
  "emotionalIntensity": 0.0-1.0,
  "explanation": "short explanation"
}""",
    "classification": """Classify the following document ({file_type}). Reply ONLY in JSON:
{
  "primaryCategory": "academic|business|legal|technical|medical|financial|creative|other",
  "secondaryCategories": ["category1", "category2"],
  "confidence": 0.0-1.0,
  "audience": "executive|technical|general|academic|customer",
  "purpose": "informative|persuasive|instructional|entertainment|reference",
  "complexity": "basic|intermediate|advanced|expert",
  "keywords": ["keyword1", "keyword2", "keyword3"],
  "industry": "technology|finance|healthcare|education|government|other"
}""",
    "summary": """Write an executive summary of the following text:
- concise but complete, at most 150 words
- in the same language as the text
- covering the key points
Reply ONLY with the summary text, no JSON.""",
    "insights": """Extract the most important insights from the following text. Reply ONLY in JSON:
{
  "mainPoints": ["main point"],
  "keyFindings": ["key finding"],
  "trends": ["trend"],
  "risks": ["risk"],
  "opportunities": ["opportunity"],
  "actionItems": ["action item"],
  "dataPoints": ["data point"]
}""",
    "recommendations": """Based on the following {file_type} document, give specific, actionable recommendations. Reply ONLY in JSON:
{
  "improvements": ["improvement"],
  "nextSteps": ["next step"],
  "tools": ["tool"],
  "resources": ["resource"],
  "bestPractices": ["best practice"],
  "considerations": ["consideration"]
}""",
    "quality": """Assess the quality of the following document. Reply ONLY in JSON:
{
  "overallScore": 0.0-10.0,
  "clarity": 0.0-10.0,
  "coherence": 0.0-10.0,
  "completeness": 0.0-10.0,
  "accuracy": 0.0-10.0,
  "readability": 0.0-10.0,
  "structure": 0.0-10.0,
  "strengths": ["strength"],
  "weaknesses": ["weakness"],
  "grade": "A|B|C|D|F"
}""",
}


def build_messages(facet: str, text: str, file_type: str = "") -> list[BaseMessage]:
    instructions = _PROMPTS[facet].replace("{file_type}", file_type.lstrip(".") or "document")
    system = _JSON_SYSTEM if FACETS[facet].json_reply else _TEXT_SYSTEM
    return [
        SystemMessage(content=system),
        HumanMessage(content=f'{instructions}\n\nText:\n"""\n{text}\n"""'),
    ]


def truncate_text(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 3] + "..."


def local_fallback(facet: str, text: str, file_type: str = "") -> BaseModel:
    if facet == "sentiment":
        return fb.sentiment_fallback(text)
    if facet == "classification":
        return fb.classification_fallback(text, file_type)
    if facet == "summary":
        return fb.summary_fallback(text)
    if facet == "insights":
        return fb.insights_fallback(text)
    if facet == "recommendations":
        return fb.recommendations_fallback(file_type)
    if facet == "quality":
        return fb.quality_fallback(text)
    raise ValueError(f"Unknown facet: {facet}")   # pragma: no cover


# ---------------------------------------------------------------------------
# Per-facet outcome
# ---------------------------------------------------------------------------

@dataclass
class FacetOutcome:
    facet:  str
    result: BaseModel
    tokens: int        = 0
    error:  str | None = None

    @property
    def fell_back(self) -> bool:
        return bool(getattr(self.result, "fallback", False))


# ---------------------------------------------------------------------------
# AIProviderGateway
# ---------------------------------------------------------------------------

class AIProviderGateway:
    """
    Six independent facet operations plus the combined analyze().

    All collaborators are injectable:
      llm_factory      (model, temperature, max_tokens) -> BaseChatModel
      secondary_check  async () -> ProviderStatus, run alongside the facets
      transport        httpx transport for check_availability()

    With the default factory a missing Groq key makes every facet fall back
    without any network call.
    """

    def __init__(
        self,
        llm_factory:     LlmFactory | None  = None,
        facet_timeout:   float | None       = None,
        max_input_chars: int | None         = None,
        secondary_check: StatusCheck | None = None,
        transport:       httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._llm_factory     = llm_factory or build_llm
        self._needs_key       = llm_factory is None
        self._timeout         = facet_timeout or settings.ai_facet_timeout_seconds
        self._max_input_chars = max_input_chars or settings.ai_max_input_chars
        self._secondary_check = secondary_check
        self._transport       = transport

    # -----------------------------------------------------------------------
    # Public facet operations
    # -----------------------------------------------------------------------

    async def sentiment(self, text: str, model: str, max_tokens: int | None = None) -> SentimentResult:
        return (await self._run_facet("sentiment", text, model, "", max_tokens)).result  # type: ignore[return-value]

    async def classification(
        self, text: str, model: str, file_type: str = "", max_tokens: int | None = None,
    ) -> ClassificationResult:
        return (await self._run_facet("classification", text, model, file_type, max_tokens)).result  # type: ignore[return-value]

    async def summary(self, text: str, model: str, max_tokens: int | None = None) -> SummaryResult:
        return (await self._run_facet("summary", text, model, "", max_tokens)).result  # type: ignore[return-value]

    async def insights(self, text: str, model: str, max_tokens: int | None = None) -> InsightsResult:
        return (await self._run_facet("insights", text, model, "", max_tokens)).result  # type: ignore[return-value]

    async def recommendations(
        self, text: str, model: str, file_type: str = "", max_tokens: int | None = None,
    ) -> RecommendationsResult:
        return (await self._run_facet("recommendations", text, model, file_type, max_tokens)).result  # type: ignore[return-value]

    async def quality(self, text: str, model: str, max_tokens: int | None = None) -> QualityResult:
        return (await self._run_facet("quality", text, model, "", max_tokens)).result  # type: ignore[return-value]

    # -----------------------------------------------------------------------
    # Combined analysis
    # -----------------------------------------------------------------------

    async def analyze(
        self,
        text:          str,
        file_type:     str,
        model:         str,
        max_tokens:    int | None = None,
        analysis_type: str        = "balanced",
    ) -> AiAnalysis:
        """
        Run all six facets concurrently and merge them.

        Never raises for provider problems; every facet is always populated.
        """
        t0 = time.perf_counter()
        truncated = truncate_text(text or "", self._max_input_chars)

        facet_tasks = [
            self._run_facet(facet, truncated, model, file_type, max_tokens)
            for facet in FACET_ORDER
        ]
        check = self._resolve_check()
        if check is not None:
            facet_tasks.append(self._safe_check(check))

        settled = await asyncio.gather(*facet_tasks, return_exceptions=True)

        outcomes: dict[str, FacetOutcome] = {}
        for facet, item in zip(FACET_ORDER, settled):
            if isinstance(item, Exception):
                logger.warning("AIGateway | facet=%s crashed, using fallback: %s", facet, item)
                item = FacetOutcome(facet, local_fallback(facet, truncated, file_type), error=str(item))
            elif isinstance(item, BaseException):
                raise item
            outcomes[facet] = item

        secondary: ProviderStatus | None = None
        if check is not None:
            status_item = settled[-1]
            if isinstance(status_item, ProviderStatus):
                secondary = status_item

        usage = UsageTotals(model=model)
        for outcome in outcomes.values():
            if outcome.error is None:
                usage.add(outcome.facet, outcome.tokens)
        usage.log()

        fallback_facets = [f for f, o in outcomes.items() if o.fell_back]
        elapsed_ms = (time.perf_counter() - t0) * 1000

        logger.info(
            "AIGateway | model=%s facets=%d fallbacks=%s tokens=%d latency_ms=%.1f",
            model, len(outcomes), ",".join(fallback_facets) or "-", usage.tokens, elapsed_ms,
        )

        return AiAnalysis(
            sentiment          = outcomes["sentiment"].result,
            classification     = outcomes["classification"].result,
            summary            = outcomes["summary"].result,
            insights           = outcomes["insights"].result,
            recommendations    = outcomes["recommendations"].result,
            quality            = outcomes["quality"].result,
            model              = model,
            provider           = "groq",
            analysis_type      = analysis_type,
            tokens_used        = usage.tokens,
            api_calls          = usage.api_calls,
            cost_usd           = float(usage.cost),
            processing_time_ms = round(elapsed_ms, 2),
            fallback_facets    = fallback_facets,
            secondary_provider = secondary,
            timestamp          = datetime.now(timezone.utc),
        )

    # -----------------------------------------------------------------------
    # Operations endpoint
    # -----------------------------------------------------------------------

    async def check_availability(self) -> dict:
        """Reachability of both providers, for GET /api/ai/status."""
        groq, chutes = await asyncio.gather(
            verify_primary_provider(self._transport),
            verify_secondary_provider(self._transport),
        )
        return {
            "groq":      groq,
            "chutes":    chutes,
            "timestamp": datetime.now(timezone.utc),
        }

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    async def _run_facet(
        self,
        facet:      str,
        text:       str,
        model:      str,
        file_type:  str,
        max_tokens: int | None,
    ) -> FacetOutcome:
        fallback = local_fallback(facet, text, file_type)
        messages = build_messages(facet, text, file_type)
        try:
            reply, tokens = await self._complete(facet, messages, model, max_tokens)
        except AIProviderError as exc:
            logger.warning(
                "AIGateway | facet=%s model=%s code=%s fallback: %s",
                facet, model, exc.error_code, exc.message,
            )
            return FacetOutcome(facet, fallback, error=exc.error_code)

        if FACETS[facet].json_reply:
            result = fb.parse_structured_reply(reply, fallback)
        else:
            result = _summary_from_reply(reply, text, fallback)

        if getattr(result, "fallback", False):
            logger.warning("AIGateway | facet=%s model=%s unparseable reply, fallback used", facet, model)
        return FacetOutcome(facet, result, tokens=tokens)

    async def _complete(
        self,
        facet:      str,
        messages:   list[BaseMessage],
        model:      str,
        max_tokens: int | None,
    ) -> tuple[str, int]:
        spec = FACETS[facet]
        budget = min(spec.max_tokens, max_tokens) if max_tokens else spec.max_tokens

        if self._needs_key and not settings.groq_configured:
            raise AIProviderError("Groq API key not configured", facet, error_code="NOT_CONFIGURED")

        try:
            llm = self._llm_factory(model, spec.temperature, budget)
            message = await asyncio.wait_for(llm.ainvoke(messages), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise AIProviderError(
                f"timed out after {self._timeout}s", facet, error_code="TIMEOUT",
            ) from exc
        except Exception as exc:
            raise AIProviderError(
                f"{type(exc).__name__}: {exc}", facet, error_code="PROVIDER_ERROR",
            ) from exc

        content = message.content if isinstance(message.content, str) else str(message.content)
        return content, _token_usage(message, messages, content)

    def _resolve_check(self) -> StatusCheck | None:
        if self._secondary_check is not None:
            return self._secondary_check
        if settings.chutes_configured:
            return lambda: verify_secondary_provider(self._transport)
        return None

    @staticmethod
    async def _safe_check(check: StatusCheck) -> ProviderStatus | None:
        try:
            return await check()
        except Exception as exc:
            logger.warning("AIGateway | secondary provider check failed: %s", exc)
            return ProviderStatus(
                provider="chutes", available=False,
                error_code="UNKNOWN_ERROR", message="Connectivity check failed", details=str(exc),
            )


def _token_usage(message: object, messages: list[BaseMessage], content: str) -> int:
    """Provider-reported total when available, else 4 chars ≈ 1 token."""
    usage = getattr(message, "usage_metadata", None)
    if isinstance(usage, dict) and usage.get("total_tokens"):
        return int(usage["total_tokens"])
    prompt_chars = "".join(m.content for m in messages if isinstance(m.content, str))
    return estimate_tokens(prompt_chars) + estimate_tokens(content)


def _summary_from_reply(reply: str, source: str, fallback: SummaryResult) -> SummaryResult:
    summary = (reply or "").strip()
    if not summary:
        return fallback
    return SummaryResult(
        summary           = summary,
        word_count        = len(summary.split()),
        compression_ratio = round(len(source) / len(summary), 2),
        fallback          = False,
    )
