"""Response schemas exposed by the API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ...core.margin import PositionSide
from ...core.models import OptionType
from ...core.strategies import LegKind, Side, StrategyType


class _FromDomain(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class GreeksResponse(_FromDomain):
    calculation_id: str
    instrument_id: str
    calculated_at: datetime
    price: float
    delta: float
    gamma: float
    theta: float
    vega: float
    rho: float
    delta_cash: float
    gamma_cash: float
    theta_daily: float
    vega_percent: float
    rho_percent: float
    lambda_: Optional[float] = Field(None, serialization_alias="lambda")
    vanna: Optional[float] = None
    charm: Optional[float] = None
    color: Optional[float] = None
    volga: Optional[float] = None
    underlying_price: float
    volatility: float
    risk_free_rate: float
    dividend_yield: float
    time_to_expiry: float
    model_used: str
    computation_time_ms: float
    steps: Optional[int] = None
    paths: Optional[int] = None
    standard_error: Optional[float] = None
    warnings: List[str] = Field(default_factory=list)


class GreeksHistoryResponse(BaseModel):
    instrument_id: str
    count: int
    items: List[GreeksResponse]


class LatestGreeksResponse(BaseModel):
    instrument_id: str
    fresh: bool
    max_age_seconds: float
    calculation: Optional[GreeksResponse] = None


class ImpliedVolatilityResponse(_FromDomain):
    analysis_id: str
    instrument_id: str
    underlying_symbol: Optional[str] = None
    analysis_date: datetime
    implied_volatility: float
    market_price: float
    model_used: str
    calculation_method: str
    iterations: int
    converged: bool
    underlying_price: float
    risk_free_rate: float
    dividend_yield: float
    time_to_expiry: float
    historical_volatility: Optional[float] = None
    iv_rank: Optional[float] = None
    iv_percentile: Optional[float] = None
    iv_standard_deviation: Optional[float] = None
    confidence_95_lower: Optional[float] = None
    confidence_95_upper: Optional[float] = None
    data_points: int
    warnings: List[str] = Field(default_factory=list)


class SurfacePointResponse(_FromDomain):
    instrument_id: str
    option_type: Optional[OptionType] = None
    strike_price: float
    expiration_date: datetime
    time_to_expiry: float
    implied_volatility: float
    converged: bool
    analysis_date: datetime


class VolatilitySurfaceResponse(_FromDomain):
    underlying_symbol: str
    as_of: datetime
    average_volatility: float
    min_volatility: float
    max_volatility: float
    expirations: List[datetime]
    strikes: List[float]
    points: List[SurfacePointResponse]


class StrategyLegResponse(_FromDomain):
    leg_index: int
    kind: LegKind
    side: Side
    quantity: float
    multiplier: float
    strike_price: Optional[float] = None
    expiration_date: Optional[datetime] = None
    entry_price: float
    current_price: float
    volatility: Optional[float] = None
    delta: float
    gamma: float
    theta: float
    vega: float
    rho: float
    position_delta: float
    position_gamma: float
    position_theta: float
    position_vega: float
    position_rho: float
    premium: float


class StrategyResponse(_FromDomain):
    strategy_id: str
    portfolio_id: Optional[str] = None
    strategy_type: StrategyType
    strategy_name: str
    description: str
    underlying_symbol: str
    underlying_price: float
    legs: List[StrategyLegResponse]
    net_delta: float
    net_gamma: float
    net_theta: float
    net_vega: float
    net_rho: float
    net_premium: float
    max_profit: Optional[float] = None
    max_loss: Optional[float] = None
    breakevens: List[float]
    probability_of_profit: Optional[float] = None
    risk_reward_ratio: Optional[float] = None
    margin_requirement: float
    buying_power_effect: float
    payoff_method: str
    model_used: str
    created_at: datetime
    warnings: List[str] = Field(default_factory=list)


class StrategyListResponse(BaseModel):
    portfolio_id: str
    count: int
    items: List[StrategyResponse]


class PositionMarginResponse(_FromDomain):
    instrument_id: str
    side: PositionSide
    notional: float
    underlying_price: float
    volatility: float
    initial_margin: float
    maintenance_margin: float
    risk_contribution: float
    hedge_credit: float


class ScenarioResultResponse(_FromDomain):
    name: str
    price_shift: float
    volatility_shift: float
    days_forward: int
    pnl: float
    loss: float


class MarginResponse(_FromDomain):
    request_id: str
    calculated_at: datetime
    initial_margin: float
    maintenance_margin: float
    hedge_credit: float
    net_initial_margin: float
    portfolio_margin: float
    net_liquidation_value: float
    excess_liquidity: float
    variation_margin: float
    portfolio_risk: float
    concentration_risk: float
    worst_scenario: str
    positions: List[PositionMarginResponse]
    scenarios: List[ScenarioResultResponse]
    calculation_method: str
    warnings: List[str] = Field(default_factory=list)


class MarkToMarketResponse(_FromDomain):
    valuation_id: str
    instrument_id: str
    valuation_date: datetime
    market_price: float
    theoretical_price: float
    intrinsic_value: float
    time_value: float
    underlying_price: float
    volatility: float
    daily_pnl: float
    delta_pnl: float
    gamma_pnl: float
    theta_pnl: float
    vega_pnl: float
    rho_pnl: float
    residual_pnl: float
    unrealized_pnl: Optional[float] = None
    inception_pnl: Optional[float] = None
    previous_valuation_id: Optional[str] = None
    previous_valuation_date: Optional[datetime] = None
    model_used: str
    warnings: List[str] = Field(default_factory=list)


class ExpirationBucketResponse(_FromDomain):
    label: str
    lower_days: int
    upper_days: int
    position_count: int
    notional: float
    gamma: float
    theta: float


class StrategyBreakdownResponse(_FromDomain):
    strategy_type: StrategyType
    count: int
    notional: float
    margin_requirement: float
    net_premium: float


class PortfolioAnalyticsResponse(_FromDomain):
    portfolio_id: str
    calculated_at: datetime
    position_count: int
    total_notional: float
    total_market_value: float
    option_allocation: float
    future_allocation: float
    other_allocation: float
    net_delta: float
    net_gamma: float
    net_theta: float
    net_vega: float
    net_rho: float
    value_at_risk: float
    expiration_buckets: List[ExpirationBucketResponse]
    near_term_buckets: List[ExpirationBucketResponse]
    strategy_breakdown: List[StrategyBreakdownResponse]
    data_quality_score: float
    margin_used: Optional[float] = None
    available_margin: Optional[float] = None
    margin_utilization: Optional[float] = None
    model_used: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
