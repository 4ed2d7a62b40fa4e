"""POST /cards/{card_id}/data and /cards/{card_id}/drilldown -- card query endpoints."""
from __future__ import annotations

from functools import lru_cache
from typing import Any

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field

from dashcore.cards.service import CardDataService

router = APIRouter()

DEFAULT_TENANT = "default"


class CardDataRequest(BaseModel):
    filters: dict[str, Any] | None = Field(
        None, description="Filter name -> scalar or list value, e.g. {'region': 'EU'}",
    )


@lru_cache
def get_card_service() -> CardDataService:
    """Process-wide service; overridden in tests via ``app.dependency_overrides``."""
    return CardDataService()


def get_tenant_id(x_tenant_id: str | None = Header(None)) -> str:
    return (x_tenant_id or "").strip() or DEFAULT_TENANT


@router.post("/{card_id}/data")
def card_data_endpoint(
    card_id: str,
    req: CardDataRequest | None = None,
    tenant_id: str = Depends(get_tenant_id),
    service: CardDataService = Depends(get_card_service),
):
    """Run a card's query: flat rows, or ``{data, rawData, pivotConfig}`` for pivot cards."""
    filters = req.filters if req is not None else None
    result = service.fetch_card_data(tenant_id, card_id, filters)
    return result.to_payload()


@router.post("/{card_id}/drilldown")
def card_drilldown_endpoint(
    card_id: str,
    req: CardDataRequest | None = None,
    tenant_id: str = Depends(get_tenant_id),
    service: CardDataService = Depends(get_card_service),
):
    """Run a card's drill-down query and return its detail rows."""
    filters = req.filters if req is not None else None
    result = service.fetch_drilldown(tenant_id, card_id, filters)
    return result.rows
