"""Greeks endpoints."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query

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
from ..mappers import to_greeks_request
from ..schemas.request import GreeksCalculationRequest
from ..schemas.response import GreeksHistoryResponse, GreeksResponse, LatestGreeksResponse
from . import run_operation

router = APIRouter(prefix="/greeks", tags=["greeks"])


@router.post("/calculate", response_model=GreeksResponse)
async def calculate(
    request: GreeksCalculationRequest,
    context: RequestContext = Depends(get_request_context),
    store: MarketDataStore = Depends(get_market_data_store),
    sink: ResultSink = Depends(get_result_sink),
    publisher: EventPublisher = Depends(get_event_publisher),
    engine: PricingEngine = Depends(get_engine),
    defaults: OperationDefaults = Depends(get_operation_defaults),
) -> GreeksResponse:
    calculation = await run_operation(
        "Greeks calculation",
        operations.calculate_greeks,
        to_greeks_request(request),
        store=store,
        sink=sink,
        publisher=publisher,
        engine=engine,
        tenant_id=context.tenant_id,
        user_id=context.user_id,
        defaults=defaults,
    )
    return GreeksResponse.model_validate(calculation)


@router.get("/{instrument_id}/history", response_model=GreeksHistoryResponse)
async def history(
    instrument_id: str,
    days: int = Query(30, ge=1, le=365),
    limit: int = Query(100, ge=1, le=1000),
    context: RequestContext = Depends(get_request_context),
    sink: ResultSink = Depends(get_result_sink),
) -> GreeksHistoryResponse:
    since = datetime.now(UTC) - timedelta(days=days)
    records = await run_operation(
        "Greeks history",
        operations.get_greeks_history,
        instrument_id,
        sink=sink,
        tenant_id=context.tenant_id,
        since=since,
        limit=limit,
    )
    items = [GreeksResponse.model_validate(record) for record in records]
    return GreeksHistoryResponse(instrument_id=instrument_id, count=len(items), items=items)


@router.get("/{instrument_id}/latest", response_model=LatestGreeksResponse)
async def latest(
    instrument_id: str,
    max_age_seconds: Optional[float] = Query(None, gt=0, le=86_400 * 365),
    context: RequestContext = Depends(get_request_context),
    sink: ResultSink = Depends(get_result_sink),
) -> LatestGreeksResponse:
    """Newest Greeks snapshot, or ``fresh=false`` with no calculation when absent or stale."""

    max_age = max_age_seconds if max_age_seconds is not None else get_settings().greeks_max_age_seconds
    record = await run_operation(
        "Greeks lookup",
        operations.get_latest_greeks,
        instrument_id,
        sink=sink,
        tenant_id=context.tenant_id,
        max_age=timedelta(seconds=max_age),
    )
    return LatestGreeksResponse(
        instrument_id=instrument_id,
        fresh=record is not None,
        max_age_seconds=max_age,
        calculation=GreeksResponse.model_validate(record) if record is not None else None,
    )
