"""Pydantic request schemas exposed by the public API."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Annotated, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ...core.margin import PositionSide
from ...core.models import ExerciseStyle, PricingMethod
from ...core.strategies import LegKind, Side, StrategyType

MarketValue = Annotated[float, Field(gt=0, le=1e9, allow_inf_nan=False)]


def _normalise_symbol(value: str) -> str:
    value = value.upper()
    if not re.fullmatch(r"[A-Z0-9.\-]{1,20}", value):
        raise ValueError("symbol must be 1-20 uppercase alphanumerics")
    return value


class MarketOverrides(BaseModel):
    underlying_price: Optional[float] = Field(None, gt=0, le=1e9)
    risk_free_rate: Optional[float] = Field(None, ge=-1.0, le=1.0)
    dividend_yield: Optional[float] = Field(None, ge=0, le=1.0)


class GreeksCalculationRequest(MarketOverrides):
    instrument_id: str = Field(..., min_length=1, max_length=64)
    pricing_model: PricingMethod = PricingMethod.BLACK_SCHOLES
    volatility: Optional[float] = Field(None, gt=0, le=5.0)


class ImpliedVolatilityRequest(MarketOverrides):
    instrument_id: str = Field(..., min_length=1, max_length=64)
    market_price: Optional[float] = Field(None, gt=0, le=1e9)
    pricing_model: PricingMethod = PricingMethod.BLACK_SCHOLES


class StrategyLegRequest(BaseModel):
    kind: LegKind
    side: Side
    quantity: float = Field(..., gt=0, le=1_000_000)
    strike_price: Optional[float] = Field(None, gt=0, le=1e9)
    expiration_date: Optional[datetime] = None
    exercise_style: ExerciseStyle = ExerciseStyle.EUROPEAN
    multiplier: float = Field(1.0, gt=0, le=1_000_000)
    entry_price: Optional[float] = Field(None, ge=0, le=1e9)
    volatility: Optional[float] = Field(None, gt=0, le=5.0)
    instrument_id: Optional[str] = Field(None, max_length=64)


class StrategyBuildRequest(MarketOverrides):
    strategy_type: StrategyType
    underlying_symbol: str = Field(..., min_length=1, max_length=20)
    legs: List[StrategyLegRequest]
    portfolio_id: Optional[str] = Field(None, max_length=64)
    currency: str = Field("USD", min_length=3, max_length=3)
    pricing_model: PricingMethod = PricingMethod.BLACK_SCHOLES
    volatility: Optional[float] = Field(None, gt=0, le=5.0)

    @field_validator("underlying_symbol")
    @classmethod
    def sym(cls, v: str) -> str:
        return _normalise_symbol(v)


class MarginPositionRequest(BaseModel):
    instrument_id: str = Field(..., min_length=1, max_length=64)
    quantity: float = Field(..., gt=0, le=1e9)
    price: float = Field(..., gt=0, le=1e9)
    side: PositionSide = PositionSide.LONG
    contract_size: float = Field(1.0, gt=0, le=1_000_000)
    underlying_symbol: Optional[str] = Field(None, min_length=1, max_length=20)


class MarginScenarioRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=32)
    price_shift: float = Field(..., ge=-1.0, le=10.0)
    volatility_shift: float = Field(0.0, ge=-5.0, le=5.0)
    days_forward: int = Field(0, ge=0, le=3650)


class MarginCalculationRequest(BaseModel):
    positions: List[MarginPositionRequest]
    underlying_prices: Dict[str, MarketValue] = Field(default_factory=dict)
    volatilities: Dict[str, Annotated[float, Field(gt=0, le=5.0, allow_inf_nan=False)]] = Field(default_factory=dict)
    scenarios: Optional[List[MarginScenarioRequest]] = None
    portfolio_id: Optional[str] = Field(None, max_length=64)


class MarkToMarketRequest(BaseModel):
    market_price: Optional[float] = Field(None, ge=0, le=1e9)
    pricing_model: PricingMethod = PricingMethod.BLACK_SCHOLES
