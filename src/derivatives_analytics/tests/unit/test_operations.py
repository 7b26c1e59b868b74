"""Tests for the analytics operations against in-memory collaborators."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from derivatives_analytics.core import operations
from derivatives_analytics.core.errors import (
    DependencyError,
    InstrumentNotFoundError,
    NotFoundError,
    UnsupportedOperationError,
    ValidationError,
)
from derivatives_analytics.core.margin import MarginPosition, PositionSide
from derivatives_analytics.core.mark_to_market import MarkToMarketValuation
from derivatives_analytics.core.models import GreeksCalculation, PricingMethod
from derivatives_analytics.core.operations import (
    GreeksRequest,
    ImpliedVolatilityRequest,
    MarginRequest,
    OperationDefaults,
    StrategyRequest,
)
from derivatives_analytics.core.portfolio import DerivativePosition
from derivatives_analytics.core.strategies import LegKind, Side, StrategyLegRequest, StrategyType

TENANT = "tenant-a"
DEFAULTS = OperationDefaults(binomial_steps=50, monte_carlo_paths=2_000, monte_carlo_seed=5)


@pytest.fixture()
def deps(store, sink, publisher, engine):
    return {"store": store, "sink": sink, "publisher": publisher, "engine": engine, "tenant_id": TENANT}


def _greeks(deps, **overrides) -> GreeksCalculation:
    request = GreeksRequest(instrument_id=overrides.pop("instrument_id", "AAPL-C-100"), **overrides)
    return operations.calculate_greeks(request, defaults=DEFAULTS, **deps)


def test_calculate_greeks_records_snapshot_and_event(deps, sink, publisher, now) -> None:
    calculation = _greeks(deps, as_of=now)

    assert calculation.underlying_price == 100.0
    assert calculation.volatility == 0.25
    assert calculation.risk_free_rate == 0.05
    assert calculation.time_to_expiry == pytest.approx(90.0 / 365.25)
    assert calculation.model_used == "black_scholes"
    assert calculation.delta_cash == pytest.approx(calculation.delta * 100.0)
    assert calculation.gamma_cash == pytest.approx(calculation.gamma * 100.0)
    assert calculation.theta_daily == pytest.approx(calculation.theta)
    assert sink.records(GreeksCalculation) == [calculation]
    assert publisher.names() == [operations.GREEKS_CALCULATED]
    assert publisher.events[0][1]["instrument_id"] == "AAPL-C-100"


def test_calculate_greeks_honours_overrides_and_model(deps, now) -> None:
    calculation = _greeks(
        deps,
        as_of=now,
        pricing_model=PricingMethod.BINOMIAL,
        underlying_price=110.0,
        volatility=0.4,
        risk_free_rate=0.01,
        dividend_yield=0.02,
    )

    assert calculation.model_used == "binomial_50"
    assert calculation.steps == 50
    assert calculation.underlying_price == 110.0
    assert calculation.dividend_yield == 0.02


def test_calculate_greeks_error_taxonomy(deps, store) -> None:
    with pytest.raises(InstrumentNotFoundError):
        _greeks(deps, instrument_id="MISSING")
    with pytest.raises(UnsupportedOperationError):
        _greeks(deps, instrument_id="AAPL-F-1")

    store.set_implied_volatility("AAPL", None)
    with pytest.raises(DependencyError, match="implied volatility"):
        _greeks(deps)


def test_other_tenants_cannot_see_instruments(store, sink, publisher, engine) -> None:
    with pytest.raises(InstrumentNotFoundError):
        operations.calculate_greeks(
            GreeksRequest(instrument_id="AAPL-C-100"),
            store=store,
            sink=sink,
            publisher=publisher,
            engine=engine,
            tenant_id="tenant-b",
        )


def test_publish_failures_do_not_fail_the_operation(deps) -> None:
    class BrokenPublisher:
        def publish(self, event_name, payload):
            raise ConnectionError("bus down")

    calculation = _greeks({**deps, "publisher": BrokenPublisher()})
    assert calculation.price > 0.0


def test_greeks_history_and_latest(deps, sink) -> None:
    now = datetime.now(UTC)
    older = _greeks(deps, as_of=now - timedelta(hours=2))
    newer = _greeks(deps, as_of=now - timedelta(minutes=1))

    history = operations.get_greeks_history("AAPL-C-100", sink=sink, tenant_id=TENANT)
    assert [item.calculation_id for item in history] == [newer.calculation_id, older.calculation_id]

    limited = operations.get_greeks_history("AAPL-C-100", sink=sink, tenant_id=TENANT, limit=1)
    assert limited == [newer]

    fresh = operations.get_latest_greeks("AAPL-C-100", sink=sink, tenant_id=TENANT, max_age=timedelta(minutes=5))
    assert fresh == newer
    stale = operations.get_latest_greeks("AAPL-C-100", sink=sink, tenant_id=TENANT, max_age=timedelta(seconds=1))
    assert stale is None
    assert operations.get_latest_greeks("OTHER", sink=sink, tenant_id=TENANT, max_age=timedelta(days=1)) is None


def test_implied_volatility_ranks_against_history(deps, store, now) -> None:
    recent = datetime.now(UTC)
    store.add_historical_iv(
        "AAPL-C-100",
        [(recent - timedelta(days=day), value) for day, value in enumerate((0.18, 0.22, 0.26, 0.30, 0.34), start=1)],
    )
    store.add_historical_iv("AAPL-C-100", [(recent - timedelta(days=400), 0.9)])

    analysis = operations.calculate_implied_volatility(
        ImpliedVolatilityRequest(instrument_id="AAPL-C-100", as_of=now),
        store=deps["store"],
        sink=deps["sink"],
        publisher=deps["publisher"],
        tenant_id=TENANT,
        defaults=DEFAULTS,
    )

    assert analysis.converged
    assert analysis.market_price == 5.9
    assert analysis.data_points == 5
    assert 0.0 <= analysis.iv_rank <= 100.0
    assert analysis.iv_percentile == pytest.approx(analysis.iv_rank / 100.0)
    assert analysis.historical_volatility == 0.22
    assert analysis.confidence_95_lower < analysis.confidence_95_upper
    assert deps["publisher"].names() == [operations.IMPLIED_VOLATILITY_CALCULATED]


def test_implied_volatility_without_history_or_price(deps, now) -> None:
    kwargs = {key: deps[key] for key in ("store", "sink", "publisher", "tenant_id")}
    analysis = operations.calculate_implied_volatility(
        ImpliedVolatilityRequest(instrument_id="AAPL-C-100", market_price=6.5, as_of=now), **kwargs
    )
    assert analysis.iv_rank is None
    assert analysis.data_points == 0
    assert "No implied volatility history available; rank and band omitted" in analysis.warnings

    with pytest.raises(ValidationError, match="market price is required"):
        operations.calculate_implied_volatility(ImpliedVolatilityRequest(instrument_id="AAPL-P-95"), **kwargs)


def test_volatility_surface_keeps_latest_analysis_per_contract(deps, now) -> None:
    kwargs = {key: deps[key] for key in ("store", "sink", "publisher", "tenant_id")}

    def solve(instrument_id: str, price: float, as_of: datetime):
        request = ImpliedVolatilityRequest(instrument_id=instrument_id, market_price=price, as_of=as_of)
        return operations.calculate_implied_volatility(request, **kwargs)

    solve("AAPL-C-100", 5.9, now)
    call = solve("AAPL-C-100", 6.5, now + timedelta(minutes=5))
    put = solve("AAPL-P-95", 1.0, now)

    surface = operations.get_volatility_surface("AAPL", sink=deps["sink"], tenant_id=TENANT)

    assert [point.instrument_id for point in surface.points] == ["AAPL-P-95", "AAPL-C-100"]
    assert surface.points[1].implied_volatility == call.implied_volatility
    assert surface.points[0].strike_price == 95.0
    assert surface.strikes == (95.0, 100.0)
    assert len(surface.expirations) == 2
    assert surface.average_volatility == pytest.approx((call.implied_volatility + put.implied_volatility) / 2.0)
    assert surface.min_volatility == min(call.implied_volatility, put.implied_volatility)
    assert surface.max_volatility == max(call.implied_volatility, put.implied_volatility)
    assert surface.as_of == now + timedelta(minutes=5)

    near = operations.get_volatility_surface(
        "AAPL", sink=deps["sink"], tenant_id=TENANT, expiration_date=(now + timedelta(days=20)).date()
    )
    assert [point.instrument_id for point in near.points] == ["AAPL-P-95"]

    with pytest.raises(NotFoundError, match="MSFT"):
        operations.get_volatility_surface("MSFT", sink=deps["sink"], tenant_id=TENANT)
    with pytest.raises(NotFoundError):
        operations.get_volatility_surface("AAPL", sink=deps["sink"], tenant_id="tenant-b")


def test_build_option_strategy_persists_and_publishes(deps, sink, publisher, now) -> None:
    expiry = now + timedelta(days=30)
    request = StrategyRequest(
        strategy_type=StrategyType.BULL_PUT_SPREAD,
        underlying_symbol="AAPL",
        portfolio_id="pf-1",
        legs=(
            StrategyLegRequest(LegKind.PUT, Side.BUY, 1.0, strike_price=90.0, expiration_date=expiry, entry_price=1.0),
            StrategyLegRequest(LegKind.PUT, Side.SELL, 1.0, strike_price=95.0, expiration_date=expiry, entry_price=2.5),
        ),
        as_of=now,
    )
    strategy = operations.build_option_strategy(
        request, store=deps["store"], sink=sink, publisher=publisher, tenant_id=TENANT
    )

    assert strategy.underlying_price == 100.0
    assert strategy.max_profit == pytest.approx(1.5)
    assert strategy.max_loss == pytest.approx(3.5)
    assert sink.get_active_strategies("pf-1", TENANT) == [strategy]
    assert publisher.names() == [operations.STRATEGY_CREATED]


def test_strategy_lookups_by_id_and_portfolio(deps, sink, publisher, now) -> None:
    expiry = now + timedelta(days=30)

    def build(as_of: datetime):
        request = StrategyRequest(
            strategy_type=StrategyType.BULL_CALL_SPREAD,
            underlying_symbol="AAPL",
            portfolio_id="pf-1",
            legs=(
                StrategyLegRequest(LegKind.CALL, Side.BUY, 1.0, strike_price=95.0, expiration_date=expiry, entry_price=7),
                StrategyLegRequest(LegKind.CALL, Side.SELL, 1.0, strike_price=105.0, expiration_date=expiry, entry_price=3),
            ),
            as_of=as_of,
        )
        return operations.build_option_strategy(
            request, store=deps["store"], sink=sink, publisher=publisher, tenant_id=TENANT
        )

    older = build(now)
    newer = build(now + timedelta(minutes=1))

    assert operations.get_strategy(older.strategy_id, sink=sink, tenant_id=TENANT) == older
    assert operations.get_portfolio_strategies("pf-1", sink=sink, tenant_id=TENANT) == [newer, older]
    assert operations.get_portfolio_strategies("pf-2", sink=sink, tenant_id=TENANT) == []
    spreads = operations.get_portfolio_strategies(
        "pf-1", sink=sink, tenant_id=TENANT, strategy_type=StrategyType.BULL_CALL_SPREAD
    )
    assert spreads == [newer, older]
    condors = operations.get_portfolio_strategies(
        "pf-1", sink=sink, tenant_id=TENANT, strategy_type=StrategyType.IRON_CONDOR
    )
    assert condors == []

    with pytest.raises(NotFoundError, match="missing"):
        operations.get_strategy("missing", sink=sink, tenant_id=TENANT)
    with pytest.raises(NotFoundError):
        operations.get_strategy(older.strategy_id, sink=sink, tenant_id="tenant-b")


def test_calculate_margin_fetches_missing_volatility(deps, store) -> None:
    request = MarginRequest(
        positions=(
            MarginPosition("AAPL-C-100", 2.0, 5.9, PositionSide.SHORT, 100.0, underlying_symbol="AAPL"),
        ),
        underlying_prices={"AAPL-C-100": 5.9},
    )
    result = operations.calculate_margin(
        request, store=store, sink=deps["sink"], publisher=deps["publisher"], tenant_id=TENANT
    )

    assert result.positions[0].volatility == 0.25
    assert result.hedge_credit > 0.0
    assert deps["publisher"].names() == [operations.MARGIN_CALCULATED]

    with pytest.raises(ValidationError):
        operations.calculate_margin(
            MarginRequest(positions=()), store=store, sink=deps["sink"], publisher=deps["publisher"], tenant_id=TENANT
        )


def test_mark_to_market_builds_a_chain(deps, store, sink, now) -> None:
    first = operations.calculate_mark_to_market("AAPL-C-100", as_of=now, defaults=DEFAULTS, **deps)
    assert first.market_price == 5.9
    assert first.unrealized_pnl == pytest.approx(0.9)
    assert first.previous_valuation_id is None

    store.set_underlying_price("AAPL", 103.0)
    second = operations.calculate_mark_to_market(
        "AAPL-C-100", as_of=now + timedelta(days=1), market_price=7.6, defaults=DEFAULTS, **deps
    )
    assert second.previous_valuation_id == first.valuation_id
    assert second.daily_pnl == pytest.approx(1.7)
    assert second.delta_pnl == pytest.approx(second.delta * 3.0)
    assert second.residual_pnl == pytest.approx(second.daily_pnl - second.explained_pnl)
    assert len(sink.records(MarkToMarketValuation)) == 2

    with pytest.raises(ValidationError):
        operations.calculate_mark_to_market("AAPL-C-100", as_of=now, defaults=DEFAULTS, **deps)


def test_portfolio_analytics_values_every_position(deps, store, now) -> None:
    store.add_position(TENANT, DerivativePosition("p1", "pf-1", "AAPL-C-100", 3.0))
    store.add_position(TENANT, DerivativePosition("p2", "pf-1", "AAPL-P-95", -2.0))
    store.add_position(TENANT, DerivativePosition("p3", "pf-1", "AAPL-F-1", 1.0))
    store.set_available_margin(TENANT, "pf-1", 10_000.0)

    analytics = operations.calculate_portfolio_analytics("pf-1", as_of=now, defaults=DEFAULTS, **deps)

    assert analytics.position_count == 3
    assert analytics.total_notional == pytest.approx(100.0 * (3 + 2 + 10))
    assert analytics.future_allocation > 0.0
    assert analytics.margin_used is not None and analytics.margin_used > 0.0
    assert analytics.margin_utilization == pytest.approx(analytics.margin_used / 10_000.0)
    assert analytics.data_quality_score == pytest.approx(2.0 / 3.0)
    assert analytics.model_used == "black_scholes"
    assert deps["publisher"].names() == [operations.PORTFOLIO_ANALYTICS_CALCULATED]


def test_empty_portfolio_requires_opt_in(deps, now) -> None:
    with pytest.raises(ValidationError, match="no derivative positions"):
        operations.calculate_portfolio_analytics("pf-none", as_of=now, **deps)

    analytics = operations.calculate_portfolio_analytics("pf-none", as_of=now, allow_empty=True, **deps)
    assert analytics.position_count == 0
    assert analytics.data_quality_score == 0.0
