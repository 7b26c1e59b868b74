"""Helpers for converting API schemas into operation requests."""

from __future__ import annotations

from ..core.margin import MarginPosition, MarginScenario
from ..core.operations import GreeksRequest, ImpliedVolatilityRequest, MarginRequest, StrategyRequest
from ..core.strategies import StrategyLegRequest as DomainStrategyLeg
from .schemas.request import (
    GreeksCalculationRequest,
    ImpliedVolatilityRequest as ImpliedVolatilityPayload,
    MarginCalculationRequest,
    StrategyBuildRequest,
    StrategyLegRequest,
)


def to_greeks_request(payload: GreeksCalculationRequest) -> GreeksRequest:
    return GreeksRequest(
        instrument_id=payload.instrument_id,
        pricing_model=payload.pricing_model,
        underlying_price=payload.underlying_price,
        volatility=payload.volatility,
        risk_free_rate=payload.risk_free_rate,
        dividend_yield=payload.dividend_yield,
    )


def to_implied_volatility_request(payload: ImpliedVolatilityPayload) -> ImpliedVolatilityRequest:
    return ImpliedVolatilityRequest(
        instrument_id=payload.instrument_id,
        market_price=payload.market_price,
        pricing_model=payload.pricing_model,
        underlying_price=payload.underlying_price,
        risk_free_rate=payload.risk_free_rate,
        dividend_yield=payload.dividend_yield,
    )


def to_strategy_leg(leg: StrategyLegRequest) -> DomainStrategyLeg:
    return DomainStrategyLeg(
        kind=leg.kind,
        side=leg.side,
        quantity=leg.quantity,
        strike_price=leg.strike_price,
        expiration_date=leg.expiration_date,
        exercise_style=leg.exercise_style,
        multiplier=leg.multiplier,
        entry_price=leg.entry_price,
        volatility=leg.volatility,
        instrument_id=leg.instrument_id,
    )


def to_strategy_request(payload: StrategyBuildRequest) -> StrategyRequest:
    """Convert a strategy build payload into the domain request."""

    return StrategyRequest(
        strategy_type=payload.strategy_type,
        underlying_symbol=payload.underlying_symbol,
        legs=tuple(to_strategy_leg(leg) for leg in payload.legs),
        portfolio_id=payload.portfolio_id,
        currency=payload.currency,
        pricing_model=payload.pricing_model,
        underlying_price=payload.underlying_price,
        volatility=payload.volatility,
        risk_free_rate=payload.risk_free_rate,
        dividend_yield=payload.dividend_yield,
    )


def to_margin_request(payload: MarginCalculationRequest) -> MarginRequest:
    scenarios = None
    if payload.scenarios:
        scenarios = tuple(
            MarginScenario(
                name=item.name,
                price_shift=item.price_shift,
                volatility_shift=item.volatility_shift,
                days_forward=item.days_forward,
            )
            for item in payload.scenarios
        )
    return MarginRequest(
        positions=tuple(
            MarginPosition(
                instrument_id=item.instrument_id,
                quantity=item.quantity,
                price=item.price,
                side=item.side,
                contract_size=item.contract_size,
                underlying_symbol=item.underlying_symbol,
            )
            for item in payload.positions
        ),
        underlying_prices=dict(payload.underlying_prices),
        volatilities=dict(payload.volatilities),
        scenarios=scenarios,
        portfolio_id=payload.portfolio_id,
    )
