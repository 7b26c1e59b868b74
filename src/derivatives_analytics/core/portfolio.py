"""Portfolio-level aggregation of derivative position valuations."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import ValidationError
from .models import DerivativeInstrument, DerivativeType, OptionContract, PricingInputs, PricingResult
from .pricing_models import BlackScholesModel, PricingModel, price_and_greeks
from .strategies import OptionStrategy, StrategyType

LOGGER = logging.getLogger(__name__)

EXPIRATION_BUCKET_DAYS: Tuple[int, ...] = (7, 14, 30, 60, 90, 180, 365)
NEAR_TERM_DAYS = 30
SHORT_DATED_DAYS = 7
VAR_NOTIONAL_RATE = 0.05
UNDER_DIVERSIFIED_MAX_POSITIONS = 4


class InstrumentClass(str, Enum):
    OPTION = "option"
    FUTURE = "future"
    OTHER = "other"

    @classmethod
    def of(cls, derivative_type: DerivativeType) -> "InstrumentClass":
        if derivative_type in (DerivativeType.CALL_OPTION, DerivativeType.PUT_OPTION):
            return cls.OPTION
        if derivative_type in (DerivativeType.FUTURE, DerivativeType.FORWARD):
            return cls.FUTURE
        return cls.OTHER


@dataclass(frozen=True, slots=True)
class DerivativePosition:
    """A holding in a portfolio; ``quantity`` is signed (negative when short)."""

    position_id: str
    portfolio_id: str
    instrument_id: str
    quantity: float
    entry_price: Optional[float] = None
    strategy_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.instrument_id:
            raise ValidationError("instrument_id must be a non-empty string")
        if self.quantity == 0:
            raise ValidationError(f"quantity must be non-zero for position {self.position_id}")


@dataclass(frozen=True, slots=True)
class PositionValuation:
    """A position marked at one instant; Greeks are scaled by quantity and contract size."""

    position_id: str
    instrument_id: str
    underlying_symbol: str
    instrument_class: InstrumentClass
    quantity: float
    contract_size: float
    unit_price: float
    market_value: float
    notional: float
    delta: float
    gamma: float
    theta: float
    vega: float
    rho: float
    days_to_expiration: float
    has_market_price: bool
    model_used: Optional[str] = None
    warnings: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ExpirationBucket:
    label: str
    lower_days: int
    upper_days: int
    position_count: int
    notional: float
    gamma: float
    theta: float


@dataclass(frozen=True, slots=True)
class StrategyBreakdown:
    strategy_type: StrategyType
    count: int
    notional: float
    margin_requirement: float
    net_premium: float


@dataclass(frozen=True, slots=True)
class DerivativesPortfolioAnalytics:
    portfolio_id: str
    tenant_id: str
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
    expiration_buckets: Tuple[ExpirationBucket, ...]
    strategy_breakdown: Tuple[StrategyBreakdown, ...]
    data_quality_score: float
    margin_used: Optional[float] = None
    available_margin: Optional[float] = None
    margin_utilization: Optional[float] = None
    model_used: Optional[str] = None
    warnings: Tuple[str, ...] = ()

    @property
    def near_term_buckets(self) -> Tuple[ExpirationBucket, ...]:
        return tuple(bucket for bucket in self.expiration_buckets if bucket.upper_days <= NEAR_TERM_DAYS)


def value_position(
    position: DerivativePosition,
    instrument: DerivativeInstrument,
    *,
    underlying_price: float,
    volatility: Optional[float] = None,
    risk_free_rate: float = 0.0,
    dividend_yield: float = 0.0,
    as_of: Optional[datetime] = None,
    model: Optional[PricingModel] = None,
    pricing: Optional[PricingResult] = None,
) -> PositionValuation:
    """Mark ``position`` against ``instrument``.

    Options go through the pricing kernel unless a ``pricing`` result is
    supplied; futures and forwards carry delta only; anything else has no
    Greeks.
    """

    timestamp = as_of or datetime.now(UTC)
    units = position.quantity * instrument.contract_size
    instrument_class = InstrumentClass.of(instrument.derivative_type)
    days = instrument.days_to_expiration(timestamp)
    delta = gamma = theta = vega = rho = 0.0
    model_used: Optional[str] = None
    warnings: Tuple[str, ...] = ()

    if isinstance(instrument, OptionContract):
        if pricing is None:
            if volatility is None:
                raise ValidationError(f"volatility is required to value option {instrument.instrument_id}")
            inputs = PricingInputs(
                underlying_price=underlying_price,
                volatility=volatility,
                risk_free_rate=risk_free_rate,
                dividend_yield=dividend_yield,
                time_to_expiry=instrument.time_to_expiry(timestamp),
            )
            pricing = price_and_greeks(instrument.terms, inputs, model or BlackScholesModel())
        fallback_price = pricing.price
        delta, gamma, theta, vega, rho = (
            units * pricing.delta,
            units * pricing.gamma,
            units * pricing.theta,
            units * pricing.vega,
            units * pricing.rho,
        )
        model_used = pricing.model_used
        warnings = tuple(pricing.warnings)
    elif instrument_class is InstrumentClass.FUTURE:
        fallback_price = underlying_price
        delta = units
    else:
        fallback_price = underlying_price

    has_market_price = instrument.current_price is not None
    unit_price = instrument.current_price if has_market_price else fallback_price
    return PositionValuation(
        position_id=position.position_id,
        instrument_id=instrument.instrument_id,
        underlying_symbol=instrument.underlying_symbol,
        instrument_class=instrument_class,
        quantity=position.quantity,
        contract_size=instrument.contract_size,
        unit_price=unit_price,
        market_value=units * unit_price,
        notional=abs(units) * underlying_price,
        delta=delta,
        gamma=gamma,
        theta=theta,
        vega=vega,
        rho=rho,
        days_to_expiration=days,
        has_market_price=has_market_price,
        model_used=model_used,
        warnings=warnings,
    )


def _expiration_buckets(valuations: Sequence[PositionValuation]) -> Tuple[ExpirationBucket, ...]:
    buckets = []
    lower = 0
    for upper in EXPIRATION_BUCKET_DAYS:
        members = [item for item in valuations if lower < item.days_to_expiration <= upper]
        buckets.append(
            ExpirationBucket(
                label=f"{lower}-{upper}d",
                lower_days=lower,
                upper_days=upper,
                position_count=len(members),
                notional=sum(item.notional for item in members),
                gamma=sum(item.gamma for item in members),
                theta=sum(item.theta for item in members),
            )
        )
        lower = upper
    return tuple(buckets)


def _strategy_breakdown(strategies: Sequence[OptionStrategy]) -> Tuple[StrategyBreakdown, ...]:
    grouped: Dict[StrategyType, List[OptionStrategy]] = defaultdict(list)
    for strategy in strategies:
        grouped[strategy.strategy_type].append(strategy)
    return tuple(
        StrategyBreakdown(
            strategy_type=strategy_type,
            count=len(members),
            notional=sum(item.total_notional for item in members),
            margin_requirement=sum(item.margin_requirement for item in members),
            net_premium=sum(item.net_premium for item in members),
        )
        for strategy_type, members in sorted(grouped.items(), key=lambda entry: entry[0].value)
    )


def aggregate_portfolio(
    portfolio_id: str,
    valuations: Sequence[PositionValuation],
    *,
    as_of: Optional[datetime] = None,
    strategies: Sequence[OptionStrategy] = (),
    margin_used: Optional[float] = None,
    available_margin: Optional[float] = None,
    tenant_id: str = "",
    model_used: Optional[str] = None,
) -> DerivativesPortfolioAnalytics:
    """Aggregate position valuations; an empty set yields zeroed analytics."""

    total_notional = sum(item.notional for item in valuations)
    total_market_value = sum(item.market_value for item in valuations)
    gross_value = sum(abs(item.market_value) for item in valuations)

    def allocation(instrument_class: InstrumentClass) -> float:
        if gross_value <= 0:
            return 0.0
        share = sum(abs(item.market_value) for item in valuations if item.instrument_class is instrument_class)
        return share / gross_value

    warnings: List[str] = []
    short_dated = sum(1 for item in valuations if 0 < item.days_to_expiration <= SHORT_DATED_DAYS)
    if short_dated:
        warnings.append(f"{short_dated} positions expiring within {SHORT_DATED_DAYS} days")
    expired = sum(1 for item in valuations if item.days_to_expiration <= 0)
    if expired:
        warnings.append(f"{expired} positions have expired")
    if 0 < len(valuations) <= UNDER_DIVERSIFIED_MAX_POSITIONS:
        warnings.append("Portfolio may be under-diversified")

    utilization = None
    if margin_used is not None and available_margin:
        utilization = margin_used / available_margin

    priced = sum(1 for item in valuations if item.has_market_price)
    analytics = DerivativesPortfolioAnalytics(
        portfolio_id=portfolio_id,
        tenant_id=tenant_id,
        calculated_at=as_of or datetime.now(UTC),
        position_count=len(valuations),
        total_notional=total_notional,
        total_market_value=total_market_value,
        option_allocation=allocation(InstrumentClass.OPTION),
        future_allocation=allocation(InstrumentClass.FUTURE),
        other_allocation=allocation(InstrumentClass.OTHER),
        net_delta=sum(item.delta for item in valuations),
        net_gamma=sum(item.gamma for item in valuations),
        net_theta=sum(item.theta for item in valuations),
        net_vega=sum(item.vega for item in valuations),
        net_rho=sum(item.rho for item in valuations),
        value_at_risk=VAR_NOTIONAL_RATE * total_notional,
        expiration_buckets=_expiration_buckets(valuations),
        strategy_breakdown=_strategy_breakdown(strategies),
        data_quality_score=priced / len(valuations) if valuations else 0.0,
        margin_used=margin_used,
        available_margin=available_margin,
        margin_utilization=utilization,
        model_used=model_used,
        warnings=tuple(warnings),
    )
    LOGGER.info(
        "Aggregated %d positions for portfolio %s (notional %.2f)",
        analytics.position_count,
        portfolio_id,
        total_notional,
    )
    return analytics
