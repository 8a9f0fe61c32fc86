"""
Observability Package — Token and Cost Accounting

Provides:
  MODEL_PRICING   — USD per 1K tokens per Groq model
  compute_cost    — Decimal cost for a token count
  estimate_tokens — 4 chars ≈ 1 token heuristic
  UsageTotals     — per-document accumulator used by the AI gateway

Request logging lives in main.py (request-id middleware).
"""

from docanalyzer.observability.cost_tracker import (
    MODEL_PRICING,
    UsageTotals,
    compute_cost,
    estimate_tokens,
)

__all__ = ["MODEL_PRICING", "UsageTotals", "compute_cost", "estimate_tokens"]
