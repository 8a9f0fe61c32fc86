"""
Cost Tracker — Token Usage and Cost per Analysed Document

The gateway fans out six facet calls per document; each reports its own
token usage. UsageTotals sums them and prices the total with one rate per
model (Groq bills input and output at a blended rate for these models).

Token counts:
  - Provider usage metadata (AIMessage.usage_metadata) when present.
  - Otherwise estimated: 4 chars ≈ 1 token.

Model pricing catalogue (USD per 1 000 tokens):
  Update MODEL_PRICING when rates change.  Unknown models use the default.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pricing catalogue (USD per 1K tokens)
# ---------------------------------------------------------------------------

MODEL_PRICING: dict[str, float] = {
    "llama-3.1-8b-instant":    0.0005,
    "llama-3.3-70b-versatile": 0.0008,
    "mixtral-8x7b-32768":      0.0007,
}

_DEFAULT_PRICE_PER_1K = 0.001


def estimate_tokens(text: str) -> int:
    """Rough token count: 4 chars ≈ 1 token."""
    return max(1, len(text) // 4) if text else 0


def compute_cost(model: str, tokens: int) -> Decimal:
    """
    USD cost of `tokens` on `model`.

    Returns a Decimal so per-facet amounts sum without float drift.
    """
    price = MODEL_PRICING.get(model, _DEFAULT_PRICE_PER_1K)
    return Decimal(str(round(tokens / 1000.0 * price, 9)))


# ---------------------------------------------------------------------------
# Per-document accumulator
# ---------------------------------------------------------------------------

@dataclass
class UsageTotals:
    """Token and call counters for one document's AI stage."""
    model:     str
    tokens:    int = 0
    api_calls: int = 0
    by_facet:  dict[str, int] = field(default_factory=dict)

    def add(self, facet: str, tokens: int) -> None:
        self.tokens += tokens
        self.api_calls += 1
        self.by_facet[facet] = self.by_facet.get(facet, 0) + tokens

    @property
    def cost(self) -> Decimal:
        return compute_cost(self.model, self.tokens)

    def log(self) -> None:
        logger.info(
            "CostTracker | model=%s tokens=%d api_calls=%d cost_usd=%s",
            self.model, self.tokens, self.api_calls, self.cost,
        )
