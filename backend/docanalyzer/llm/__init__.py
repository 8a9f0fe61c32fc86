"""
LLM Package

Model selection and AI enrichment over an OpenAI-compatible provider (Groq),
plus a connectivity-only secondary provider (Chutes).

Public API::

    from docanalyzer.llm import AIProviderGateway, DocumentProfile, ModelSelectionStrategy

    selection = ModelSelectionStrategy().select(DocumentProfile(document_length=len(text)))
    ai = await AIProviderGateway().analyze(text, ".pdf", selection.model, selection.max_tokens)
"""

from docanalyzer.llm.fallback import parse_structured_reply
from docanalyzer.llm.gateway import AIProviderGateway, FACETS
from docanalyzer.llm.router import DocumentProfile, ModelSelection, ModelSelectionStrategy, build_llm

__all__ = [
    "AIProviderGateway",
    "DocumentProfile",
    "FACETS",
    "ModelSelection",
    "ModelSelectionStrategy",
    "build_llm",
    "parse_structured_reply",
]
