"""Stateless analytics operations.

Each operation fetches a consistent snapshot from the market data store,
computes, saves the resulting record, publishes a domain event and returns
the record. Collaborators are passed in explicitly on every call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar
from uuid import uuid4

from ..observability.metrics import (
    CALCULATION_WARNINGS,
    CALCULATIONS,
    EVENT_PUBLISH_FAILURES,
    IV_NON_CONVERGENCE,
)
from .collaborators import EventPublisher, MarketDataStore, ResultSink
from .errors import (
    DependencyError,
    DerivativesError,
    InstrumentNotFoundError,
    NotFoundError,
    UnsupportedOperationError,
    ValidationError,
)
from .implied_volatility import (
    VolatilitySurface,
    build_volatility_surface,
    iv_history_statistics,
    solve_implied_volatility,
)
from .margin import MarginCalculationResult, MarginPosition, MarginScenario, PositionSide, estimate_margin
from .mark_to_market import MarkToMarketValuation, attribute_pnl
from .models import (
    DerivativeInstrument,
    GreeksCalculation,
    ImpliedVolatilityAnalysis,
    OptionContract,
    PricingInputs,
    PricingMethod,
    as_utc,
)
from .portfolio import DerivativesPortfolioAnalytics, aggregate_portfolio, value_position
from .pricing_engine import PricingEngine, PricingJob
from .pricing_models import PricingModel, get_pricing_model
from .strategies import OptionStrategy, StrategyLegRequest, StrategyType, build_strategy

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

GREEKS_CALCULATED = "derivatives.greeks.calculated"
IMPLIED_VOLATILITY_CALCULATED = "derivatives.implied_volatility.calculated"
STRATEGY_CREATED = "derivatives.strategy.created"
MARGIN_CALCULATED = "derivatives.margin.calculated"
MARK_TO_MARKET_CALCULATED = "derivatives.mark_to_market.calculated"
PORTFOLIO_ANALYTICS_CALCULATED = "portfolio.analytics.calculated"


@dataclass(frozen=True, slots=True)
class OperationDefaults:
    """Documented stubs and model settings applied when a request leaves them unset.

    ``risk_free_rate`` is used only when neither the request nor the market
    data store supplies a rate for the instrument currency.
    """

    risk_free_rate: float = 0.05
    dividend_yield: float = 0.0
    binomial_steps: int = 100
    monte_carlo_paths: int = 20_000
    monte_carlo_seed: Optional[int] = None
    iv_history_window_days: int = 252


@dataclass(frozen=True, slots=True)
class GreeksRequest:
    instrument_id: str
    pricing_model: PricingMethod = PricingMethod.BLACK_SCHOLES
    underlying_price: Optional[float] = None
    volatility: Optional[float] = None
    risk_free_rate: Optional[float] = None
    dividend_yield: Optional[float] = None
    as_of: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class ImpliedVolatilityRequest:
    instrument_id: str
    market_price: Optional[float] = None
    pricing_model: PricingMethod = PricingMethod.BLACK_SCHOLES
    underlying_price: Optional[float] = None
    risk_free_rate: Optional[float] = None
    dividend_yield: Optional[float] = None
    as_of: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class StrategyRequest:
    strategy_type: StrategyType
    underlying_symbol: str
    legs: Sequence[StrategyLegRequest]
    portfolio_id: Optional[str] = None
    currency: str = "USD"
    pricing_model: PricingMethod = PricingMethod.BLACK_SCHOLES
    underlying_price: Optional[float] = None
    volatility: Optional[float] = None
    risk_free_rate: Optional[float] = None
    dividend_yield: Optional[float] = None
    as_of: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class MarginRequest:
    positions: Sequence[MarginPosition]
    underlying_prices: Mapping[str, float] = field(default_factory=dict)
    volatilities: Mapping[str, float] = field(default_factory=dict)
    scenarios: Optional[Sequence[MarginScenario]] = None
    portfolio_id: Optional[str] = None
    as_of: Optional[datetime] = None


def _call(description: str, func: Callable[..., T], *args: Any) -> T:
    """Invoke a collaborator, wrapping unexpected failures as :class:`DependencyError`."""

    try:
        return func(*args)
    except DerivativesError:
        raise
    except Exception as exc:
        raise DependencyError(f"{description} failed: {exc}") from exc


def _publish(publisher: EventPublisher, event_name: str, payload: Dict[str, Any]) -> None:
    try:
        publisher.publish(event_name, payload)
    except Exception:
        EVENT_PUBLISH_FAILURES.labels(event=event_name).inc()
        LOGGER.exception("Failed to publish %s", event_name)


def _record(operation: str, warnings: Sequence[str]) -> None:
    CALCULATIONS.labels(operation=operation).inc()
    if warnings:
        CALCULATION_WARNINGS.labels(operation=operation).inc(len(warnings))


def _now(as_of: Optional[datetime]) -> datetime:
    return as_utc(as_of) if as_of is not None else datetime.now(UTC)


def _model_for(method: PricingMethod, defaults: OperationDefaults) -> PricingModel:
    return get_pricing_model(
        method,
        binomial_steps=defaults.binomial_steps,
        monte_carlo_paths=defaults.monte_carlo_paths,
        monte_carlo_seed=defaults.monte_carlo_seed,
    )


def _resolve_instrument(store: MarketDataStore, instrument_id: str, tenant_id: str) -> DerivativeInstrument:
    instrument = _call("instrument lookup", store.get_instrument, instrument_id, tenant_id)
    if instrument is None:
        raise InstrumentNotFoundError(instrument_id, tenant_id)
    return instrument


def _resolve_option(
    store: MarketDataStore,
    instrument_id: str,
    tenant_id: str,
    operation: str,
) -> OptionContract:
    instrument = _resolve_instrument(store, instrument_id, tenant_id)
    if not isinstance(instrument, OptionContract):
        raise UnsupportedOperationError(
            f"{operation} is not supported for {instrument.derivative_type.value} instrument {instrument_id}"
        )
    return instrument


def _risk_free_rate(
    store: MarketDataStore,
    override: Optional[float],
    currency: str,
    defaults: OperationDefaults,
) -> float:
    if override is not None:
        return override
    rate = _call("risk-free rate lookup", store.get_risk_free_rate, currency)
    return defaults.risk_free_rate if rate is None else rate


def _market_inputs(
    store: MarketDataStore,
    instrument: DerivativeInstrument,
    *,
    as_of: datetime,
    defaults: OperationDefaults,
    underlying_price: Optional[float] = None,
    volatility: Optional[float] = None,
    risk_free_rate: Optional[float] = None,
    dividend_yield: Optional[float] = None,
) -> PricingInputs:
    symbol = instrument.underlying_symbol
    if underlying_price is None:
        underlying_price = _call("underlying price lookup", store.get_underlying_price, symbol)
    if volatility is None:
        volatility = _call("implied volatility lookup", store.get_implied_volatility, symbol)
    return PricingInputs(
        underlying_price=underlying_price,
        volatility=volatility,
        risk_free_rate=_risk_free_rate(store, risk_free_rate, instrument.currency, defaults),
        dividend_yield=defaults.dividend_yield if dividend_yield is None else dividend_yield,
        time_to_expiry=instrument.time_to_expiry(as_of),
    )


def calculate_greeks(
    request: GreeksRequest,
    *,
    store: MarketDataStore,
    sink: ResultSink,
    publisher: EventPublisher,
    engine: PricingEngine,
    tenant_id: str,
    user_id: Optional[str] = None,
    defaults: OperationDefaults = OperationDefaults(),
) -> GreeksCalculation:
    """Price an option and record a timestamped Greeks snapshot."""

    timestamp = _now(request.as_of)
    option = _resolve_option(store, request.instrument_id, tenant_id, "Greeks calculation")
    inputs = _market_inputs(
        store,
        option,
        as_of=timestamp,
        defaults=defaults,
        underlying_price=request.underlying_price,
        volatility=request.volatility,
        risk_free_rate=request.risk_free_rate,
        dividend_yield=request.dividend_yield,
    )
    model = _model_for(request.pricing_model, defaults)
    result = engine.price(option.terms, inputs, model, cache_key_prefix=f"{tenant_id}:{option.instrument_id}")

    size = option.contract_size
    spot = inputs.underlying_price
    calculation = GreeksCalculation(
        calculation_id=uuid4().hex,
        tenant_id=tenant_id,
        instrument_id=option.instrument_id,
        calculated_at=timestamp,
        price=result.price,
        delta=result.delta,
        gamma=result.gamma,
        theta=result.theta,
        vega=result.vega,
        rho=result.rho,
        delta_cash=result.delta * spot * size,
        gamma_cash=result.gamma * spot * spot * size / 100.0,
        theta_daily=result.theta * size,
        vega_percent=result.vega * size,
        rho_percent=result.rho * size,
        underlying_price=spot,
        volatility=inputs.volatility,
        risk_free_rate=inputs.risk_free_rate,
        dividend_yield=inputs.dividend_yield,
        time_to_expiry=inputs.time_to_expiry,
        model_used=result.model_used,
        computation_time_ms=result.computation_time_ms,
        lambda_=result.lambda_,
        vanna=result.vanna,
        charm=result.charm,
        color=result.color,
        volga=result.volga,
        steps=result.steps,
        paths=result.paths,
        standard_error=result.standard_error,
        warnings=tuple(result.warnings),
    )
    _call("result save", sink.save, calculation)
    _record("greeks", calculation.warnings)
    _publish(
        publisher,
        GREEKS_CALCULATED,
        {
            "calculation_id": calculation.calculation_id,
            "tenant_id": tenant_id,
            "user_id": user_id,
            "instrument_id": option.instrument_id,
            "model_used": calculation.model_used,
            "price": calculation.price,
            "delta": calculation.delta,
            "calculated_at": timestamp.isoformat(),
        },
    )
    LOGGER.info(
        "Calculated Greeks for %s with %s in %.2fms",
        option.instrument_id,
        calculation.model_used,
        calculation.computation_time_ms,
    )
    return calculation


def get_greeks_history(
    instrument_id: str,
    *,
    sink: ResultSink,
    tenant_id: str,
    since: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> List[GreeksCalculation]:
    """Stored Greeks snapshots for ``instrument_id``, newest first."""

    return _call("Greeks history lookup", sink.greeks_history, instrument_id, tenant_id, since, limit)


def get_latest_greeks(
    instrument_id: str,
    *,
    sink: ResultSink,
    tenant_id: str,
    max_age: timedelta,
    now: Optional[datetime] = None,
) -> Optional[GreeksCalculation]:
    """Newest snapshot if it is no older than ``max_age``; ``None`` when absent or stale."""

    history = get_greeks_history(instrument_id, sink=sink, tenant_id=tenant_id, limit=1)
    if not history:
        return None
    latest = history[0]
    if not latest.is_fresh(max_age, now):
        LOGGER.info("Latest Greeks for %s are stale (age %s)", instrument_id, latest.age(now))
        return None
    return latest


def calculate_implied_volatility(
    request: ImpliedVolatilityRequest,
    *,
    store: MarketDataStore,
    sink: ResultSink,
    publisher: EventPublisher,
    tenant_id: str,
    user_id: Optional[str] = None,
    defaults: OperationDefaults = OperationDefaults(),
) -> ImpliedVolatilityAnalysis:
    """Solve implied volatility from a market price and rank it against trailing history."""

    timestamp = _now(request.as_of)
    option = _resolve_option(store, request.instrument_id, tenant_id, "Implied volatility calculation")
    market_price = request.market_price if request.market_price is not None else option.current_price
    if market_price is None:
        raise ValidationError(f"A market price is required to solve implied volatility for {option.instrument_id}")

    spot = request.underlying_price
    if spot is None:
        spot = _call("underlying price lookup", store.get_underlying_price, option.underlying_symbol)
    rate = _risk_free_rate(store, request.risk_free_rate, option.currency, defaults)
    dividend = defaults.dividend_yield if request.dividend_yield is None else request.dividend_yield
    tau = option.time_to_expiry(timestamp)

    model = _model_for(request.pricing_model, defaults)
    solved = solve_implied_volatility(option.terms, market_price, spot, rate, dividend, tau, model)
    if not solved.converged:
        IV_NON_CONVERGENCE.labels(model=request.pricing_model.value).inc()

    window = defaults.iv_history_window_days
    history = _call("IV history lookup", store.get_historical_iv, option.instrument_id, window)
    statistics = iv_history_statistics(solved.volatility, history)
    historical_volatility = _call(
        "historical volatility lookup", store.get_historical_volatility, option.underlying_symbol, window
    )

    warnings = list(solved.warnings)
    if statistics.data_points == 0:
        warnings.append("No implied volatility history available; rank and band omitted")

    analysis = ImpliedVolatilityAnalysis(
        analysis_id=uuid4().hex,
        tenant_id=tenant_id,
        instrument_id=option.instrument_id,
        analysis_date=timestamp,
        implied_volatility=solved.volatility,
        market_price=market_price,
        model_used=solved.model_used,
        iterations=solved.iterations,
        converged=solved.converged,
        underlying_price=spot,
        risk_free_rate=rate,
        dividend_yield=dividend,
        time_to_expiry=tau,
        historical_volatility=historical_volatility,
        iv_rank=statistics.rank,
        iv_percentile=statistics.percentile,
        iv_standard_deviation=statistics.standard_deviation,
        confidence_95_lower=statistics.lower_band,
        confidence_95_upper=statistics.upper_band,
        data_points=statistics.data_points,
        warnings=tuple(warnings),
        underlying_symbol=option.underlying_symbol,
        option_type=option.option_type,
        strike_price=option.strike_price,
        expiration_date=option.expiration_date,
    )
    _call("result save", sink.save, analysis)
    _record("implied_volatility", analysis.warnings)
    _publish(
        publisher,
        IMPLIED_VOLATILITY_CALCULATED,
        {
            "analysis_id": analysis.analysis_id,
            "tenant_id": tenant_id,
            "user_id": user_id,
            "instrument_id": option.instrument_id,
            "implied_volatility": analysis.implied_volatility,
            "converged": analysis.converged,
            "iv_rank": analysis.iv_rank,
            "analysis_date": timestamp.isoformat(),
        },
    )
    LOGGER.info(
        "Solved implied volatility %.6f for %s in %d iterations",
        analysis.implied_volatility,
        option.instrument_id,
        analysis.iterations,
    )
    return analysis


def get_volatility_surface(
    underlying_symbol: str,
    *,
    sink: ResultSink,
    tenant_id: str,
    expiration_date: Optional[date] = None,
) -> VolatilitySurface:
    """Latest stored implied volatility per contract on ``underlying_symbol``, optionally for one expiry date."""

    analyses = _call(
        "implied volatility analyses lookup", sink.implied_volatility_analyses, underlying_symbol, tenant_id
    )
    if expiration_date is not None:
        analyses = [
            analysis
            for analysis in analyses
            if analysis.expiration_date is not None and as_utc(analysis.expiration_date).date() == expiration_date
        ]
    surface = build_volatility_surface(underlying_symbol, analyses)
    if surface is None:
        raise NotFoundError(f"No implied volatility analyses stored for {underlying_symbol}")
    LOGGER.debug("Volatility surface for %s has %d points", underlying_symbol, len(surface.points))
    return surface


def build_option_strategy(
    request: StrategyRequest,
    *,
    store: MarketDataStore,
    sink: ResultSink,
    publisher: EventPublisher,
    tenant_id: str,
    user_id: Optional[str] = None,
    defaults: OperationDefaults = OperationDefaults(),
) -> OptionStrategy:
    symbol = request.underlying_symbol
    spot = request.underlying_price
    if spot is None:
        spot = _call("underlying price lookup", store.get_underlying_price, symbol)
    volatility = request.volatility
    if volatility is None:
        volatility = _call("implied volatility lookup", store.get_implied_volatility, symbol)

    strategy = build_strategy(
        request.strategy_type,
        symbol,
        request.legs,
        underlying_price=spot,
        volatility=volatility,
        risk_free_rate=_risk_free_rate(store, request.risk_free_rate, request.currency, defaults),
        dividend_yield=defaults.dividend_yield if request.dividend_yield is None else request.dividend_yield,
        as_of=_now(request.as_of),
        model=_model_for(request.pricing_model, defaults),
        tenant_id=tenant_id,
        portfolio_id=request.portfolio_id,
    )
    _call("result save", sink.save, strategy)
    _record("strategy", strategy.warnings)
    _publish(
        publisher,
        STRATEGY_CREATED,
        {
            "strategy_id": strategy.strategy_id,
            "tenant_id": tenant_id,
            "user_id": user_id,
            "portfolio_id": strategy.portfolio_id,
            "strategy_type": strategy.strategy_type.value,
            "underlying_symbol": symbol,
            "net_premium": strategy.net_premium,
            "created_at": strategy.created_at.isoformat(),
        },
    )
    return strategy


def get_strategy(strategy_id: str, *, sink: ResultSink, tenant_id: str) -> OptionStrategy:
    strategy = _call("strategy lookup", sink.get_strategy, strategy_id, tenant_id)
    if strategy is None:
        raise NotFoundError(f"Option strategy not found: {strategy_id}")
    return strategy


def get_portfolio_strategies(
    portfolio_id: str,
    *,
    sink: ResultSink,
    tenant_id: str,
    strategy_type: Optional[StrategyType] = None,
) -> List[OptionStrategy]:
    """Strategies saved against ``portfolio_id``, newest first."""

    strategies = _call("active strategies lookup", sink.get_active_strategies, portfolio_id, tenant_id)
    if strategy_type is not None:
        strategies = [strategy for strategy in strategies if strategy.strategy_type is strategy_type]
    return sorted(strategies, key=lambda strategy: as_utc(strategy.created_at), reverse=True)


def calculate_margin(
    request: MarginRequest,
    *,
    store: MarketDataStore,
    sink: ResultSink,
    publisher: EventPublisher,
    tenant_id: str,
    user_id: Optional[str] = None,
) -> MarginCalculationResult:
    """Scenario-grid margin; volatilities missing from the request are fetched per underlying."""

    if not request.positions:
        raise ValidationError("At least one position is required for a margin calculation")

    volatilities = dict(request.volatilities)
    for position in request.positions:
        if position.instrument_id not in volatilities:
            symbol = position.underlying_symbol or position.instrument_id
            volatilities[position.instrument_id] = _call(
                "implied volatility lookup", store.get_implied_volatility, symbol
            )

    result = estimate_margin(
        request.positions,
        request.underlying_prices,
        volatilities,
        request.scenarios,
        as_of=_now(request.as_of),
    )
    _call("result save", sink.save, result)
    _record("margin", result.warnings)
    _publish(
        publisher,
        MARGIN_CALCULATED,
        {
            "request_id": result.request_id,
            "tenant_id": tenant_id,
            "user_id": user_id,
            "portfolio_id": request.portfolio_id,
            "initial_margin": result.initial_margin,
            "portfolio_margin": result.portfolio_margin,
            "calculated_at": result.calculated_at.isoformat(),
        },
    )
    return result


def calculate_mark_to_market(
    instrument_id: str,
    *,
    store: MarketDataStore,
    sink: ResultSink,
    publisher: EventPublisher,
    engine: PricingEngine,
    tenant_id: str,
    user_id: Optional[str] = None,
    market_price: Optional[float] = None,
    pricing_model: PricingMethod = PricingMethod.BLACK_SCHOLES,
    as_of: Optional[datetime] = None,
    defaults: OperationDefaults = OperationDefaults(),
) -> MarkToMarketValuation:
    """Value an option and attribute its move since the previous valuation in the chain."""

    timestamp = _now(as_of)
    option = _resolve_option(store, instrument_id, tenant_id, "Mark-to-market")
    inputs = _market_inputs(store, option, as_of=timestamp, defaults=defaults)
    pricing = engine.price(
        option.terms,
        inputs,
        _model_for(pricing_model, defaults),
        cache_key_prefix=f"{tenant_id}:{option.instrument_id}",
    )
    previous = _call("previous valuation lookup", sink.get_previous_valuation, instrument_id, tenant_id)

    valuation = attribute_pnl(
        option.terms,
        pricing,
        inputs,
        previous,
        tenant_id=tenant_id,
        instrument_id=option.instrument_id,
        valuation_date=timestamp,
        market_price=market_price if market_price is not None else option.current_price,
        entry_price=option.entry_price,
    )
    _call("result save", sink.save, valuation)
    _record("mark_to_market", valuation.warnings)
    _publish(
        publisher,
        MARK_TO_MARKET_CALCULATED,
        {
            "valuation_id": valuation.valuation_id,
            "tenant_id": tenant_id,
            "user_id": user_id,
            "instrument_id": option.instrument_id,
            "market_price": valuation.market_price,
            "daily_pnl": valuation.daily_pnl,
            "residual_pnl": valuation.residual_pnl,
            "valuation_date": timestamp.isoformat(),
        },
    )
    LOGGER.info(
        "Marked %s at %.4f (daily P&L %.4f, residual %.4f)",
        option.instrument_id,
        valuation.market_price,
        valuation.daily_pnl,
        valuation.residual_pnl,
    )
    return valuation


def calculate_portfolio_analytics(
    portfolio_id: str,
    *,
    store: MarketDataStore,
    sink: ResultSink,
    publisher: EventPublisher,
    engine: PricingEngine,
    tenant_id: str,
    user_id: Optional[str] = None,
    allow_empty: bool = False,
    pricing_model: PricingMethod = PricingMethod.BLACK_SCHOLES,
    as_of: Optional[datetime] = None,
    defaults: OperationDefaults = OperationDefaults(),
) -> DerivativesPortfolioAnalytics:
    """Value every position in parallel and aggregate portfolio risk.

    An empty portfolio is rejected unless ``allow_empty`` is set, in which
    case zeroed analytics are returned.
    """

    timestamp = _now(as_of)
    positions = _call("portfolio positions lookup", store.get_portfolio_positions, portfolio_id, tenant_id)
    if not positions and not allow_empty:
        raise ValidationError(f"Portfolio {portfolio_id} has no derivative positions")

    instruments = [_resolve_instrument(store, position.instrument_id, tenant_id) for position in positions]
    spots: Dict[str, float] = {}
    volatilities: Dict[str, float] = {}
    for instrument in instruments:
        symbol = instrument.underlying_symbol
        if symbol not in spots:
            spots[symbol] = _call("underlying price lookup", store.get_underlying_price, symbol)
            volatilities[symbol] = _call("implied volatility lookup", store.get_implied_volatility, symbol)

    model = _model_for(pricing_model, defaults)
    jobs: List[PricingJob] = []
    job_index: Dict[int, int] = {}
    for index, instrument in enumerate(instruments):
        if isinstance(instrument, OptionContract):
            inputs = _market_inputs(
                store,
                instrument,
                as_of=timestamp,
                defaults=defaults,
                underlying_price=spots[instrument.underlying_symbol],
                volatility=volatilities[instrument.underlying_symbol],
            )
            job_index[index] = len(jobs)
            jobs.append(PricingJob(instrument.terms, inputs, model, f"{tenant_id}:{instrument.instrument_id}"))
    priced = engine.price_many(jobs)

    valuations = [
        value_position(
            position,
            instrument,
            underlying_price=spots[instrument.underlying_symbol],
            as_of=timestamp,
            pricing=priced[job_index[index]] if index in job_index else None,
        )
        for index, (position, instrument) in enumerate(zip(positions, instruments))
    ]

    margin_positions = [
        MarginPosition(
            instrument_id=valuation.instrument_id,
            quantity=abs(valuation.quantity),
            price=valuation.unit_price,
            side=PositionSide.LONG if valuation.quantity > 0 else PositionSide.SHORT,
            contract_size=valuation.contract_size,
            underlying_symbol=valuation.underlying_symbol,
        )
        for valuation in valuations
        if valuation.unit_price > 0
    ]
    margin_used = None
    if margin_positions:
        margin = estimate_margin(
            margin_positions,
            {item.instrument_id: item.price for item in margin_positions},
            {item.instrument_id: volatilities[item.underlying_symbol] for item in margin_positions},
            as_of=timestamp,
        )
        margin_used = margin.net_initial_margin

    analytics = aggregate_portfolio(
        portfolio_id,
        valuations,
        as_of=timestamp,
        strategies=_call("active strategies lookup", sink.get_active_strategies, portfolio_id, tenant_id),
        margin_used=margin_used,
        available_margin=_call("available margin lookup", store.get_available_margin, portfolio_id, tenant_id),
        tenant_id=tenant_id,
        model_used=model.name,
    )
    _call("result save", sink.save, analytics)
    _record("portfolio_analytics", analytics.warnings)
    _publish(
        publisher,
        PORTFOLIO_ANALYTICS_CALCULATED,
        {
            "portfolio_id": portfolio_id,
            "tenant_id": tenant_id,
            "user_id": user_id,
            "position_count": analytics.position_count,
            "total_notional": analytics.total_notional,
            "value_at_risk": analytics.value_at_risk,
            "calculated_at": timestamp.isoformat(),
        },
    )
    return analytics
