"""Tests for multi-leg strategy construction and payoff metrics."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from derivatives_analytics.core.errors import ValidationError
from derivatives_analytics.core.margin import heuristic_initial_margin
from derivatives_analytics.core.strategies import (
    LegKind,
    Side,
    StrategyLegRequest,
    StrategyType,
    build_strategy,
)

AS_OF = datetime(2024, 3, 1, 16, 0, tzinfo=UTC)
EXPIRY = AS_OF + timedelta(days=30)


def _option(kind: LegKind, side: Side, strike: float, entry: float, **extra) -> StrategyLegRequest:
    return StrategyLegRequest(
        kind=kind,
        side=side,
        quantity=extra.pop("quantity", 1.0),
        strike_price=strike,
        expiration_date=extra.pop("expiration_date", EXPIRY),
        entry_price=entry,
        **extra,
    )


def _build(strategy_type: StrategyType, legs, **kwargs):
    return build_strategy(
        strategy_type,
        "AAPL",
        legs,
        underlying_price=kwargs.pop("underlying_price", 100.0),
        volatility=kwargs.pop("volatility", 0.2),
        risk_free_rate=0.01,
        as_of=AS_OF,
        tenant_id="tenant-a",
        **kwargs,
    )


def test_bull_call_spread_closed_form_metrics() -> None:
    strategy = _build(
        StrategyType.BULL_CALL_SPREAD,
        [
            _option(LegKind.CALL, Side.BUY, 95.0, 7.0),
            _option(LegKind.CALL, Side.SELL, 105.0, 3.0),
        ],
    )

    assert strategy.max_profit == pytest.approx(6.0)
    assert strategy.max_loss == pytest.approx(4.0)
    assert strategy.breakevens == (pytest.approx(99.0),)
    assert strategy.risk_reward_ratio == pytest.approx(1.5)
    assert strategy.net_premium == pytest.approx(4.0)
    assert strategy.margin_requirement == pytest.approx(4.0)
    assert strategy.buying_power_effect == pytest.approx(4.0)
    assert strategy.payoff_method == "closed_form"
    assert strategy.strategy_name == "Bull Call Spread"
    assert 0.0 < strategy.probability_of_profit < 1.0


def test_custom_strategy_matches_closed_form_for_same_legs() -> None:
    legs = [
        _option(LegKind.CALL, Side.BUY, 95.0, 7.0),
        _option(LegKind.CALL, Side.SELL, 105.0, 3.0),
    ]
    named = _build(StrategyType.BULL_CALL_SPREAD, legs)
    custom = _build(StrategyType.CUSTOM, legs)

    assert custom.payoff_method == "generic"
    assert custom.max_profit == pytest.approx(named.max_profit)
    assert custom.max_loss == pytest.approx(named.max_loss)
    assert custom.breakevens == pytest.approx(named.breakevens)
    assert custom.probability_of_profit == pytest.approx(named.probability_of_profit)


def test_long_straddle_has_unlimited_profit() -> None:
    strategy = _build(
        StrategyType.STRADDLE,
        [
            _option(LegKind.CALL, Side.BUY, 100.0, 5.0),
            _option(LegKind.PUT, Side.BUY, 100.0, 4.0),
        ],
    )

    assert strategy.max_profit is None
    assert strategy.max_loss == pytest.approx(9.0)
    assert strategy.breakevens == pytest.approx((91.0, 109.0))
    assert strategy.risk_reward_ratio is None


def test_iron_condor_metrics_and_signed_greeks() -> None:
    strategy = _build(
        StrategyType.IRON_CONDOR,
        [
            _option(LegKind.PUT, Side.BUY, 90.0, 1.0),
            _option(LegKind.PUT, Side.SELL, 95.0, 2.0),
            _option(LegKind.CALL, Side.SELL, 105.0, 2.0),
            _option(LegKind.CALL, Side.BUY, 110.0, 1.0),
        ],
    )

    assert strategy.max_profit == pytest.approx(2.0)
    assert strategy.max_loss == pytest.approx(3.0)
    assert strategy.breakevens == pytest.approx((93.0, 107.0))
    assert strategy.net_premium == pytest.approx(-2.0)
    assert strategy.buying_power_effect == pytest.approx(3.0)
    for leg in strategy.legs:
        assert leg.position_delta == pytest.approx(leg.side.sign * leg.delta)
    assert strategy.net_delta == pytest.approx(sum(leg.position_delta for leg in strategy.legs))
    # short premium collects time decay
    assert strategy.net_theta > 0.0


def test_covered_call_uses_underlying_leg_at_spot() -> None:
    strategy = _build(
        StrategyType.COVERED_CALL,
        [
            StrategyLegRequest(kind=LegKind.UNDERLYING, side=Side.BUY, quantity=1.0, entry_price=100.0),
            _option(LegKind.CALL, Side.SELL, 105.0, 2.0),
        ],
    )

    assert strategy.max_profit == pytest.approx(7.0)
    assert strategy.max_loss == pytest.approx(98.0)
    assert strategy.breakevens == (pytest.approx(98.0),)
    stock = strategy.legs[0]
    assert stock.current_price == 100.0
    assert stock.delta == 1.0
    assert stock.volatility is None


def test_naked_short_call_margin_uses_heuristic() -> None:
    strategy = _build(
        StrategyType.SINGLE_OPTION,
        [_option(LegKind.CALL, Side.SELL, 110.0, 1.5)],
    )

    assert strategy.max_loss is None
    assert strategy.max_profit == pytest.approx(1.5)
    assert strategy.margin_requirement == pytest.approx(heuristic_initial_margin(100.0, 0.2))
    assert strategy.breakevens == (pytest.approx(111.5),)


def test_leg_specific_volatility_overrides_strategy_volatility() -> None:
    strategy = _build(
        StrategyType.CUSTOM,
        [
            _option(LegKind.CALL, Side.BUY, 100.0, 3.0, volatility=0.5),
            _option(LegKind.CALL, Side.BUY, 100.0, 3.0),
        ],
    )
    high, base = strategy.legs
    assert high.volatility == 0.5
    assert base.volatility == 0.2
    assert high.current_price > base.current_price


def test_entry_price_defaults_to_model_price() -> None:
    strategy = _build(StrategyType.SINGLE_OPTION, [_option(LegKind.PUT, Side.BUY, 100.0, None)])
    (leg,) = strategy.legs
    assert leg.entry_price == pytest.approx(leg.current_price)
    assert strategy.net_premium == pytest.approx(leg.current_price)


def test_empty_leg_list_is_rejected() -> None:
    with pytest.raises(ValidationError, match="at least one leg"):
        _build(StrategyType.CUSTOM, [])


def test_named_strategy_rejects_wrong_shape() -> None:
    with pytest.raises(ValidationError, match="bull_call_spread"):
        _build(
            StrategyType.BULL_CALL_SPREAD,
            [
                _option(LegKind.CALL, Side.SELL, 95.0, 7.0),
                _option(LegKind.CALL, Side.BUY, 105.0, 3.0),
            ],
        )
    with pytest.raises(ValidationError):
        _build(StrategyType.STRADDLE, [_option(LegKind.CALL, Side.BUY, 100.0, 5.0)])


def test_option_leg_requires_strike_and_expiry() -> None:
    with pytest.raises(ValidationError, match="strike_price"):
        _build(StrategyType.CUSTOM, [StrategyLegRequest(kind=LegKind.CALL, side=Side.BUY, quantity=1.0)])
    with pytest.raises(ValidationError, match="quantity"):
        _build(StrategyType.CUSTOM, [_option(LegKind.CALL, Side.BUY, 100.0, 1.0, quantity=0.0)])


def test_mixed_expirations_warn_for_custom_and_fail_for_named() -> None:
    legs = [
        _option(LegKind.CALL, Side.BUY, 100.0, 5.0),
        _option(LegKind.PUT, Side.BUY, 100.0, 4.0, expiration_date=EXPIRY + timedelta(days=30)),
    ]
    custom = _build(StrategyType.CUSTOM, legs)
    assert any("different dates" in warning for warning in custom.warnings)

    with pytest.raises(ValidationError, match="share one expiration"):
        _build(StrategyType.STRADDLE, legs)


def test_collar_with_put_above_cost_basis_cannot_lose() -> None:
    strategy = _build(
        StrategyType.COLLAR,
        [
            StrategyLegRequest(kind=LegKind.UNDERLYING, side=Side.BUY, quantity=1.0, entry_price=90.0),
            _option(LegKind.PUT, Side.BUY, 95.0, 2.0),
            _option(LegKind.CALL, Side.SELL, 110.0, 1.0),
        ],
    )

    assert strategy.max_loss == 0.0
    assert strategy.max_profit == pytest.approx(19.0)
    assert strategy.margin_requirement == 0.0
