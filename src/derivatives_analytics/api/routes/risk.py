"""Margin, mark-to-market and portfolio risk endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from ...core import operations
from ...core.collaborators import EventPublisher, MarketDataStore, ResultSink
from ...core.operations import OperationDefaults
from ...core.pricing_engine import PricingEngine
from ..config import get_settings
from ..dependencies import (
    RequestContext,
    get_engine,
    get_event_publisher,
    get_market_data_store,
    get_operation_defaults,
    get_request_context,
    get_result_sink,
)
from ..mappers import to_margin_request
from ..schemas.request import MarginCalculationRequest, MarkToMarketRequest
from ..schemas.response import MarginResponse, MarkToMarketResponse, PortfolioAnalyticsResponse
from . import run_operation

router = APIRouter(tags=["risk"])


@router.post("/margin/calculate", response_model=MarginResponse)
async def calculate_margin(
    request: MarginCalculationRequest,
    context: RequestContext = Depends(get_request_context),
    store: MarketDataStore = Depends(get_market_data_store),
    sink: ResultSink = Depends(get_result_sink),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> MarginResponse:
    max_positions = get_settings().max_margin_positions
    if len(request.positions) > max_positions:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"A margin request may have at most {max_positions} positions",
        )

    result = await run_operation(
        "Margin calculation",
        operations.calculate_margin,
        to_margin_request(request),
        store=store,
        sink=sink,
        publisher=publisher,
        tenant_id=context.tenant_id,
        user_id=context.user_id,
    )
    return MarginResponse.model_validate(result)


@router.post("/mark-to-market/{instrument_id}", response_model=MarkToMarketResponse)
async def mark_to_market(
    instrument_id: str,
    request: Optional[MarkToMarketRequest] = Body(None),
    context: RequestContext = Depends(get_request_context),
    store: MarketDataStore = Depends(get_market_data_store),
    sink: ResultSink = Depends(get_result_sink),
    publisher: EventPublisher = Depends(get_event_publisher),
    engine: PricingEngine = Depends(get_engine),
    defaults: OperationDefaults = Depends(get_operation_defaults),
) -> MarkToMarketResponse:
    """Mark an option; without a body the stored market price (or theoretical value) is used."""

    request = request or MarkToMarketRequest()
    valuation = await run_operation(
        "Mark-to-market",
        operations.calculate_mark_to_market,
        instrument_id,
        store=store,
        sink=sink,
        publisher=publisher,
        engine=engine,
        tenant_id=context.tenant_id,
        user_id=context.user_id,
        market_price=request.market_price,
        pricing_model=request.pricing_model,
        defaults=defaults,
    )
    return MarkToMarketResponse.model_validate(valuation)


@router.get("/portfolios/{portfolio_id}/analytics", response_model=PortfolioAnalyticsResponse)
async def portfolio_analytics(
    portfolio_id: str,
    allow_empty: bool = Query(False),
    context: RequestContext = Depends(get_request_context),
    store: MarketDataStore = Depends(get_market_data_store),
    sink: ResultSink = Depends(get_result_sink),
    publisher: EventPublisher = Depends(get_event_publisher),
    engine: PricingEngine = Depends(get_engine),
    defaults: OperationDefaults = Depends(get_operation_defaults),
) -> PortfolioAnalyticsResponse:
    analytics = await run_operation(
        "Portfolio analytics",
        operations.calculate_portfolio_analytics,
        portfolio_id,
        store=store,
        sink=sink,
        publisher=publisher,
        engine=engine,
        tenant_id=context.tenant_id,
        user_id=context.user_id,
        allow_empty=allow_empty,
        defaults=defaults,
    )
    return PortfolioAnalyticsResponse.model_validate(analytics)
