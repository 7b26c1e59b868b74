"""Option strategy endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...core import operations
from ...core.collaborators import EventPublisher, MarketDataStore, ResultSink
from ...core.operations import OperationDefaults
from ...core.strategies import StrategyType
from ..config import get_settings
from ..dependencies import (
    RequestContext,
    get_event_publisher,
    get_market_data_store,
    get_operation_defaults,
    get_request_context,
    get_result_sink,
)
from ..mappers import to_strategy_request
from ..schemas.request import StrategyBuildRequest
from ..schemas.response import StrategyListResponse, StrategyResponse
from . import run_operation

router = APIRouter(prefix="/strategies", tags=["strategies"])


@router.post("/build", response_model=StrategyResponse)
async def build(
    request: StrategyBuildRequest,
    context: RequestContext = Depends(get_request_context),
    store: MarketDataStore = Depends(get_market_data_store),
    sink: ResultSink = Depends(get_result_sink),
    publisher: EventPublisher = Depends(get_event_publisher),
    defaults: OperationDefaults = Depends(get_operation_defaults),
) -> StrategyResponse:
    max_legs = get_settings().max_strategy_legs
    if len(request.legs) > max_legs:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"A strategy may have at most {max_legs} legs",
        )

    strategy = await run_operation(
        "Strategy construction",
        operations.build_option_strategy,
        to_strategy_request(request),
        store=store,
        sink=sink,
        publisher=publisher,
        tenant_id=context.tenant_id,
        user_id=context.user_id,
        defaults=defaults,
    )
    return StrategyResponse.model_validate(strategy)


@router.get("/portfolio/{portfolio_id}", response_model=StrategyListResponse)
async def portfolio_strategies(
    portfolio_id: str,
    strategy_type: Optional[StrategyType] = Query(None),
    context: RequestContext = Depends(get_request_context),
    sink: ResultSink = Depends(get_result_sink),
) -> StrategyListResponse:
    strategies = await run_operation(
        "Strategy lookup",
        operations.get_portfolio_strategies,
        portfolio_id,
        sink=sink,
        tenant_id=context.tenant_id,
        strategy_type=strategy_type,
    )
    items = [StrategyResponse.model_validate(strategy) for strategy in strategies]
    return StrategyListResponse(portfolio_id=portfolio_id, count=len(items), items=items)


@router.get("/{strategy_id}", response_model=StrategyResponse)
async def get_strategy(
    strategy_id: str,
    context: RequestContext = Depends(get_request_context),
    sink: ResultSink = Depends(get_result_sink),
) -> StrategyResponse:
    strategy = await run_operation(
        "Strategy lookup",
        operations.get_strategy,
        strategy_id,
        sink=sink,
        tenant_id=context.tenant_id,
    )
    return StrategyResponse.model_validate(strategy)
