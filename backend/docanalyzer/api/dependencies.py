"""
Composed FastAPI Dependencies

The single wiring point for a request's collaborators.  Route handlers take
these through Depends; tests swap them with app.dependency_overrides.

  get_user_id            X-User-ID header → int (settings.default_user_id when absent)
  get_persistence_client SQLAlchemyPersistenceClient scoped to that user
  get_gateway            process-wide AIProviderGateway
  get_ocr_service        process-wide TesseractOCRService
  get_coordinator        BatchJobCoordinator built from the three above
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header

from docanalyzer.core.config import settings
from docanalyzer.core.errors import ValidationError
from docanalyzer.db.client import PersistenceClient, SQLAlchemyPersistenceClient
from docanalyzer.llm.gateway import AIProviderGateway
from docanalyzer.processing import BaseOCRService, DocumentTypeAnalyzer, TesseractOCRService
from docanalyzer.services.coordinator import BatchJobCoordinator


# ---------------------------------------------------------------------------
# 1. Request user
#    Authentication is handled upstream; the id only scopes RLS.
# ---------------------------------------------------------------------------

def get_user_id(
    x_user_id: Annotated[str | None, Header(alias="X-User-ID")] = None,
) -> int:
    if x_user_id is None or not x_user_id.strip():
        return settings.default_user_id
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise ValidationError("X-User-ID must be an integer", error_code="INVALID_USER_ID", field="X-User-ID") from None
    if user_id < 1:
        raise ValidationError("X-User-ID must be positive", error_code="INVALID_USER_ID", field="X-User-ID")
    return user_id


# ---------------------------------------------------------------------------
# 2. Collaborators
# ---------------------------------------------------------------------------

def get_persistence_client(
    user_id: Annotated[int, Depends(get_user_id)],
) -> PersistenceClient:
    return SQLAlchemyPersistenceClient(user_id=user_id)


@lru_cache(maxsize=1)
def get_gateway() -> AIProviderGateway:
    return AIProviderGateway()


@lru_cache(maxsize=1)
def get_ocr_service() -> BaseOCRService:
    return TesseractOCRService()


def get_coordinator(
    client:  Annotated[PersistenceClient, Depends(get_persistence_client)],
    gateway: Annotated[AIProviderGateway, Depends(get_gateway)],
    ocr:     Annotated[BaseOCRService, Depends(get_ocr_service)],
) -> BatchJobCoordinator:
    return BatchJobCoordinator(client, gateway, DocumentTypeAnalyzer(ocr_service=ocr))


# ---------------------------------------------------------------------------
# Type aliases for cleaner route signatures
# ---------------------------------------------------------------------------

UserId      = Annotated[int,                 Depends(get_user_id)]
Gateway     = Annotated[AIProviderGateway,   Depends(get_gateway)]
Coordinator = Annotated[BatchJobCoordinator, Depends(get_coordinator)]
