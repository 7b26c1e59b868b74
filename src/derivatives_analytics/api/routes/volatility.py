"""Implied volatility endpoints."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query

from ...core import operations
from ...core.collaborators import EventPublisher, MarketDataStore, ResultSink
from ...core.operations import OperationDefaults
from ..dependencies import (
    RequestContext,
    get_event_publisher,
    get_market_data_store,
    get_operation_defaults,
    get_request_context,
    get_result_sink,
)
from ..mappers import to_implied_volatility_request
from ..schemas.request import ImpliedVolatilityRequest
from ..schemas.response import ImpliedVolatilityResponse, VolatilitySurfaceResponse
from . import run_operation

router = APIRouter(tags=["volatility"])


@router.post("/implied-volatility/calculate", response_model=ImpliedVolatilityResponse)
async def calculate(
    request: ImpliedVolatilityRequest,
    context: RequestContext = Depends(get_request_context),
    store: MarketDataStore = Depends(get_market_data_store),
    sink: ResultSink = Depends(get_result_sink),
    publisher: EventPublisher = Depends(get_event_publisher),
    defaults: OperationDefaults = Depends(get_operation_defaults),
) -> ImpliedVolatilityResponse:
    analysis = await run_operation(
        "Implied volatility calculation",
        operations.calculate_implied_volatility,
        to_implied_volatility_request(request),
        store=store,
        sink=sink,
        publisher=publisher,
        tenant_id=context.tenant_id,
        user_id=context.user_id,
        defaults=defaults,
    )
    return ImpliedVolatilityResponse.model_validate(analysis)


@router.get("/volatility-surface/{underlying_symbol}", response_model=VolatilitySurfaceResponse)
async def surface(
    underlying_symbol: str = Path(..., min_length=1, max_length=20),
    expiration_date: Optional[date] = Query(None),
    context: RequestContext = Depends(get_request_context),
    sink: ResultSink = Depends(get_result_sink),
) -> VolatilitySurfaceResponse:
    """Latest stored implied volatility per contract, ordered by expiry then strike."""

    volatility_surface = await run_operation(
        "Volatility surface",
        operations.get_volatility_surface,
        underlying_symbol.upper(),
        sink=sink,
        tenant_id=context.tenant_id,
        expiration_date=expiration_date,
    )
    return VolatilitySurfaceResponse.model_validate(volatility_surface)
