"""Multi-leg option strategy evaluation.

Legs are priced through the pricing kernel and signed by side (buy = +1,
sell = -1) before being summed. Payoff metrics at expiry come from a
closed form for each named strategy and from a generic piecewise-linear
evaluator for ``single_option`` and ``custom``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from scipy.stats import norm

from .errors import ValidationError
from .margin import heuristic_initial_margin
from .models import ExerciseStyle, OptionTerms, OptionType, PricingInputs, as_utc
from .pricing_models import BlackScholesModel, PricingModel, price_and_greeks

LOGGER = logging.getLogger(__name__)

SLOPE_EPSILON = 1e-12


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"

    @property
    def sign(self) -> float:
        return 1.0 if self is Side.BUY else -1.0


class LegKind(str, Enum):
    CALL = "call"
    PUT = "put"
    UNDERLYING = "underlying"
    FUTURE = "future"

    @property
    def is_option(self) -> bool:
        return self in (LegKind.CALL, LegKind.PUT)


class StrategyType(str, Enum):
    SINGLE_OPTION = "single_option"
    COVERED_CALL = "covered_call"
    PROTECTIVE_PUT = "protective_put"
    STRADDLE = "straddle"
    STRANGLE = "strangle"
    BULL_CALL_SPREAD = "bull_call_spread"
    BULL_PUT_SPREAD = "bull_put_spread"
    BEAR_CALL_SPREAD = "bear_call_spread"
    BEAR_PUT_SPREAD = "bear_put_spread"
    IRON_CONDOR = "iron_condor"
    IRON_BUTTERFLY = "iron_butterfly"
    COLLAR = "collar"
    CUSTOM = "custom"


STRATEGY_NAMES: Dict[StrategyType, Tuple[str, str]] = {
    StrategyType.SINGLE_OPTION: ("Single Option", "Single option position"),
    StrategyType.COVERED_CALL: ("Covered Call", "Selling call options against long stock position"),
    StrategyType.PROTECTIVE_PUT: ("Protective Put", "Buying put options to protect long stock position"),
    StrategyType.STRADDLE: ("Straddle", "Call and put at the same strike, both bought or both sold"),
    StrategyType.STRANGLE: ("Strangle", "Call and put at different strikes, both bought or both sold"),
    StrategyType.BULL_CALL_SPREAD: ("Bull Call Spread", "Buy lower strike call, sell higher strike call"),
    StrategyType.BULL_PUT_SPREAD: ("Bull Put Spread", "Sell higher strike put, buy lower strike put"),
    StrategyType.BEAR_CALL_SPREAD: ("Bear Call Spread", "Sell lower strike call, buy higher strike call"),
    StrategyType.BEAR_PUT_SPREAD: ("Bear Put Spread", "Buy higher strike put, sell lower strike put"),
    StrategyType.IRON_CONDOR: ("Iron Condor", "Combination of bull put spread and bear call spread"),
    StrategyType.IRON_BUTTERFLY: (
        "Iron Butterfly",
        "Combination of bull put spread and bear call spread at same short strike",
    ),
    StrategyType.COLLAR: ("Collar", "Long stock with protective put and covered call"),
    StrategyType.CUSTOM: ("Custom Strategy", "Custom multi-leg options strategy"),
}


@dataclass(frozen=True, slots=True)
class StrategyLegRequest:
    """One leg as supplied by the caller; option legs need a strike and an expiry."""

    kind: LegKind
    side: Side
    quantity: float
    strike_price: Optional[float] = None
    expiration_date: Optional[datetime] = None
    exercise_style: ExerciseStyle = ExerciseStyle.EUROPEAN
    multiplier: float = 1.0
    entry_price: Optional[float] = None
    volatility: Optional[float] = None
    instrument_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class StrategyLeg:
    """A priced leg. Per-unit Greeks are unsigned; ``position_*`` fields are signed contributions."""

    leg_index: int
    kind: LegKind
    side: Side
    quantity: float
    multiplier: float
    strike_price: Optional[float]
    expiration_date: Optional[datetime]
    exercise_style: ExerciseStyle
    instrument_id: Optional[str]
    entry_price: float
    current_price: float
    volatility: Optional[float]
    time_to_expiry: Optional[float]
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
    warnings: Tuple[str, ...] = ()

    @property
    def exposure(self) -> float:
        return self.quantity * self.multiplier

    def payoff_at_expiry(self, underlying_price: float) -> float:
        """Signed P&L of the leg at expiry, net of its entry premium."""

        if self.kind is LegKind.CALL:
            value = max(0.0, underlying_price - self.strike_price)
        elif self.kind is LegKind.PUT:
            value = max(0.0, self.strike_price - underlying_price)
        else:
            value = underlying_price
        return self.side.sign * self.exposure * (value - self.entry_price)


@dataclass(frozen=True, slots=True)
class PayoffProfile:
    """Expiry payoff metrics; ``None`` means unlimited. ``max_loss`` is a positive magnitude."""

    max_profit: Optional[float]
    max_loss: Optional[float]
    breakevens: Tuple[float, ...]
    method: str


@dataclass(frozen=True, slots=True)
class OptionStrategy:
    """An evaluated strategy. Rebuild it from the full leg set to change any leg."""

    strategy_id: str
    tenant_id: str
    portfolio_id: Optional[str]
    strategy_type: StrategyType
    strategy_name: str
    description: str
    underlying_symbol: str
    underlying_price: float
    legs: Tuple[StrategyLeg, ...]
    net_delta: float
    net_gamma: float
    net_theta: float
    net_vega: float
    net_rho: float
    net_premium: float
    max_profit: Optional[float]
    max_loss: Optional[float]
    breakevens: Tuple[float, ...]
    probability_of_profit: Optional[float]
    risk_reward_ratio: Optional[float]
    margin_requirement: float
    buying_power_effect: float
    payoff_method: str
    model_used: str
    created_at: datetime
    warnings: Tuple[str, ...] = ()

    @property
    def total_notional(self) -> float:
        return sum(abs(leg.exposure) * self.underlying_price for leg in self.legs)


def _validate_leg(index: int, leg: StrategyLegRequest) -> None:
    prefix = f"legs[{index}]"
    if not isinstance(leg.side, Side):
        raise ValidationError(f"{prefix}.side must be one of: buy, sell")
    if not isinstance(leg.kind, LegKind):
        raise ValidationError(f"{prefix}.kind must be one of: {', '.join(k.value for k in LegKind)}")
    if leg.quantity is None or not math.isfinite(leg.quantity) or leg.quantity <= 0:
        raise ValidationError(f"{prefix}.quantity must be strictly positive")
    if leg.multiplier <= 0:
        raise ValidationError(f"{prefix}.multiplier must be strictly positive")
    if leg.entry_price is not None and leg.entry_price < 0:
        raise ValidationError(f"{prefix}.entry_price must not be negative")
    if leg.volatility is not None and leg.volatility <= 0:
        raise ValidationError(f"{prefix}.volatility must be strictly positive")
    if leg.kind.is_option:
        if leg.strike_price is None or leg.strike_price <= 0:
            raise ValidationError(f"{prefix}.strike_price must be strictly positive for option legs")
        if leg.expiration_date is None:
            raise ValidationError(f"{prefix}.expiration_date is required for option legs")


def _price_leg(
    index: int,
    leg: StrategyLegRequest,
    *,
    underlying_price: float,
    volatility: float,
    risk_free_rate: float,
    dividend_yield: float,
    as_of: datetime,
    model: PricingModel,
) -> StrategyLeg:
    sigma = leg.volatility or volatility
    tau: Optional[float] = None
    if leg.expiration_date is not None:
        tau = (as_utc(leg.expiration_date) - as_utc(as_of)).total_seconds() / (365.25 * 86400.0)

    warnings: Tuple[str, ...] = ()
    gamma = theta = vega = rho = 0.0
    if leg.kind.is_option:
        terms = OptionTerms(OptionType(leg.kind.value), leg.strike_price, leg.exercise_style)
        inputs = PricingInputs(underlying_price, sigma, risk_free_rate, dividend_yield, tau)
        result = price_and_greeks(terms, inputs, model)
        price, delta = result.price, result.delta
        gamma, theta, vega, rho = result.gamma, result.theta, result.vega, result.rho
        warnings = tuple(result.warnings)
    else:
        price, delta = underlying_price, 1.0

    sign = leg.side.sign
    exposure = leg.quantity * leg.multiplier
    entry = leg.entry_price if leg.entry_price is not None else price
    return StrategyLeg(
        leg_index=index,
        kind=leg.kind,
        side=leg.side,
        quantity=leg.quantity,
        multiplier=leg.multiplier,
        strike_price=leg.strike_price,
        expiration_date=leg.expiration_date,
        exercise_style=leg.exercise_style,
        instrument_id=leg.instrument_id,
        entry_price=entry,
        current_price=price,
        volatility=sigma if leg.kind.is_option else None,
        time_to_expiry=tau,
        delta=delta,
        gamma=gamma,
        theta=theta,
        vega=vega,
        rho=rho,
        position_delta=sign * exposure * delta,
        position_gamma=sign * exposure * gamma,
        position_theta=sign * exposure * theta,
        position_vega=sign * exposure * vega,
        position_rho=sign * exposure * rho,
        premium=sign * exposure * entry,
        warnings=warnings,
    )


def total_payoff(legs: Sequence[StrategyLeg], underlying_price: float) -> float:
    return sum(leg.payoff_at_expiry(underlying_price) for leg in legs)


def generic_payoff_profile(legs: Sequence[StrategyLeg]) -> PayoffProfile:
    """Exact expiry metrics of a piecewise-linear payoff.

    The payoff is evaluated at zero and every strike; beyond the highest strike
    it moves with the net exposure to calls, futures and the underlying.
    """

    kinks = sorted({0.0, *(leg.strike_price for leg in legs if leg.kind.is_option)})
    values = [total_payoff(legs, point) for point in kinks]
    right_slope = sum(leg.side.sign * leg.exposure for leg in legs if leg.kind is not LegKind.PUT)

    max_profit = None if right_slope > SLOPE_EPSILON else max(values)
    max_loss = None if right_slope < -SLOPE_EPSILON else max(0.0, -min(values))

    roots: List[float] = []
    for (left, left_value), (right, right_value) in zip(zip(kinks, values), zip(kinks[1:], values[1:])):
        if left > 0.0 and left_value == 0.0:
            roots.append(left)
        elif left_value * right_value < 0.0:
            roots.append(left + left_value * (right - left) / (left_value - right_value))
    last, last_value = kinks[-1], values[-1]
    if last > 0.0 and last_value == 0.0:
        roots.append(last)
    elif abs(right_slope) > SLOPE_EPSILON and last_value * right_slope < 0.0:
        roots.append(last - last_value / right_slope)

    breakevens = tuple(sorted({round(root, 10) for root in roots}))
    return PayoffProfile(max_profit, max_loss, breakevens, "generic")


def _options_of(legs: Sequence[StrategyLeg], kind: LegKind) -> List[StrategyLeg]:
    return sorted((leg for leg in legs if leg.kind is kind), key=lambda leg: leg.strike_price)


def _require(condition: bool, strategy_type: StrategyType, detail: str) -> None:
    if not condition:
        raise ValidationError(f"{strategy_type.value} requires {detail}")


def _common_exposure(legs: Sequence[StrategyLeg], strategy_type: StrategyType) -> float:
    exposures = {round(leg.exposure, 9) for leg in legs}
    _require(len(exposures) == 1, strategy_type, "equal quantity x multiplier on every leg")
    return legs[0].exposure


def _shape(
    legs: Sequence[StrategyLeg],
    strategy_type: StrategyType,
    calls: int,
    puts: int,
    underlying: int = 0,
) -> Tuple[List[StrategyLeg], List[StrategyLeg], List[StrategyLeg]]:
    call_legs = _options_of(legs, LegKind.CALL)
    put_legs = _options_of(legs, LegKind.PUT)
    stock_legs = [leg for leg in legs if leg.kind in (LegKind.UNDERLYING, LegKind.FUTURE)]
    _require(
        len(call_legs) == calls and len(put_legs) == puts and len(stock_legs) == underlying,
        strategy_type,
        f"{calls} call leg(s), {puts} put leg(s) and {underlying} underlying leg(s)",
    )
    return call_legs, put_legs, stock_legs


def _breakevens(*points: float) -> Tuple[float, ...]:
    return tuple(sorted(point for point in points if point > 0.0))


def _covered_call(legs: Sequence[StrategyLeg]) -> PayoffProfile:
    kind = StrategyType.COVERED_CALL
    (call,), _, (stock,) = _shape(legs, kind, calls=1, puts=0, underlying=1)
    _require(stock.side is Side.BUY and call.side is Side.SELL, kind, "long underlying and a sold call")
    n = _common_exposure(legs, kind)
    cost = stock.entry_price - call.entry_price
    return PayoffProfile(
        max_profit=n * (call.strike_price - cost),
        max_loss=n * cost,
        breakevens=_breakevens(cost),
        method="closed_form",
    )


def _protective_put(legs: Sequence[StrategyLeg]) -> PayoffProfile:
    kind = StrategyType.PROTECTIVE_PUT
    _, (put,), (stock,) = _shape(legs, kind, calls=0, puts=1, underlying=1)
    _require(stock.side is Side.BUY and put.side is Side.BUY, kind, "long underlying and a bought put")
    n = _common_exposure(legs, kind)
    cost = stock.entry_price + put.entry_price
    return PayoffProfile(
        max_profit=None,
        max_loss=max(0.0, n * (cost - put.strike_price)),
        breakevens=_breakevens(cost),
        method="closed_form",
    )


def _volatility_pair(legs: Sequence[StrategyLeg], kind: StrategyType) -> PayoffProfile:
    (call,), (put,), _ = _shape(legs, kind, calls=1, puts=1)
    _require(call.side is put.side, kind, "both legs bought or both legs sold")
    if kind is StrategyType.STRADDLE:
        _require(call.strike_price == put.strike_price, kind, "call and put at the same strike")
    else:
        _require(put.strike_price < call.strike_price, kind, "a put strike below the call strike")
    n = _common_exposure(legs, kind)
    premium = call.entry_price + put.entry_price
    breakevens = _breakevens(put.strike_price - premium, call.strike_price + premium)
    if call.side is Side.BUY:
        return PayoffProfile(None, n * premium, breakevens, "closed_form")
    return PayoffProfile(n * premium, None, breakevens, "closed_form")


def _vertical(legs: Sequence[StrategyLeg], kind: StrategyType) -> PayoffProfile:
    uses_calls = kind in (StrategyType.BULL_CALL_SPREAD, StrategyType.BEAR_CALL_SPREAD)
    call_legs, put_legs, _ = _shape(legs, kind, calls=2 if uses_calls else 0, puts=0 if uses_calls else 2)
    lower, upper = call_legs if uses_calls else put_legs
    _require(lower.strike_price < upper.strike_price, kind, "two distinct strikes")
    n = _common_exposure(legs, kind)
    width = upper.strike_price - lower.strike_price

    if kind is StrategyType.BULL_CALL_SPREAD:
        _require(lower.side is Side.BUY and upper.side is Side.SELL, kind, "buying the lower strike call and selling the higher")
        debit = lower.entry_price - upper.entry_price
        return PayoffProfile(n * (width - debit), n * debit, _breakevens(lower.strike_price + debit), "closed_form")
    if kind is StrategyType.BEAR_CALL_SPREAD:
        _require(lower.side is Side.SELL and upper.side is Side.BUY, kind, "selling the lower strike call and buying the higher")
        credit = lower.entry_price - upper.entry_price
        return PayoffProfile(n * credit, n * (width - credit), _breakevens(lower.strike_price + credit), "closed_form")
    if kind is StrategyType.BULL_PUT_SPREAD:
        _require(lower.side is Side.BUY and upper.side is Side.SELL, kind, "selling the higher strike put and buying the lower")
        credit = upper.entry_price - lower.entry_price
        return PayoffProfile(n * credit, n * (width - credit), _breakevens(upper.strike_price - credit), "closed_form")
    _require(lower.side is Side.SELL and upper.side is Side.BUY, kind, "buying the higher strike put and selling the lower")
    debit = upper.entry_price - lower.entry_price
    return PayoffProfile(n * (width - debit), n * debit, _breakevens(upper.strike_price - debit), "closed_form")


def _iron(legs: Sequence[StrategyLeg], kind: StrategyType) -> PayoffProfile:
    (short_call, long_call), (long_put, short_put), _ = _shape(legs, kind, calls=2, puts=2)
    _require(
        long_put.side is Side.BUY
        and short_put.side is Side.SELL
        and short_call.side is Side.SELL
        and long_call.side is Side.BUY,
        kind,
        "bought wings and sold inner strikes",
    )
    if kind is StrategyType.IRON_BUTTERFLY:
        _require(
            long_put.strike_price < short_put.strike_price == short_call.strike_price < long_call.strike_price,
            kind,
            "sold put and call at the same middle strike",
        )
    else:
        _require(
            long_put.strike_price < short_put.strike_price < short_call.strike_price < long_call.strike_price,
            kind,
            "four increasing strikes",
        )
    n = _common_exposure(legs, kind)
    credit = (
        short_put.entry_price - long_put.entry_price + short_call.entry_price - long_call.entry_price
    )
    widest = max(
        short_put.strike_price - long_put.strike_price,
        long_call.strike_price - short_call.strike_price,
    )
    return PayoffProfile(
        max_profit=n * credit,
        max_loss=n * (widest - credit),
        breakevens=_breakevens(short_put.strike_price - credit, short_call.strike_price + credit),
        method="closed_form",
    )


def _collar(legs: Sequence[StrategyLeg]) -> PayoffProfile:
    kind = StrategyType.COLLAR
    (call,), (put,), (stock,) = _shape(legs, kind, calls=1, puts=1, underlying=1)
    _require(
        stock.side is Side.BUY and put.side is Side.BUY and call.side is Side.SELL,
        kind,
        "long underlying, a bought put and a sold call",
    )
    _require(put.strike_price < call.strike_price, kind, "a put strike below the call strike")
    n = _common_exposure(legs, kind)
    cost = stock.entry_price + put.entry_price - call.entry_price
    return PayoffProfile(
        max_profit=n * (call.strike_price - cost),
        max_loss=max(0.0, n * (cost - put.strike_price)),
        breakevens=_breakevens(cost),
        method="closed_form",
    )


def _single_option(legs: Sequence[StrategyLeg]) -> PayoffProfile:
    _require(
        len(legs) == 1 and legs[0].kind.is_option,
        StrategyType.SINGLE_OPTION,
        "exactly one option leg",
    )
    return generic_payoff_profile(legs)


_PAYOFF_PROFILES: Dict[StrategyType, Callable[[Sequence[StrategyLeg]], PayoffProfile]] = {
    StrategyType.SINGLE_OPTION: _single_option,
    StrategyType.COVERED_CALL: _covered_call,
    StrategyType.PROTECTIVE_PUT: _protective_put,
    StrategyType.STRADDLE: lambda legs: _volatility_pair(legs, StrategyType.STRADDLE),
    StrategyType.STRANGLE: lambda legs: _volatility_pair(legs, StrategyType.STRANGLE),
    StrategyType.BULL_CALL_SPREAD: lambda legs: _vertical(legs, StrategyType.BULL_CALL_SPREAD),
    StrategyType.BULL_PUT_SPREAD: lambda legs: _vertical(legs, StrategyType.BULL_PUT_SPREAD),
    StrategyType.BEAR_CALL_SPREAD: lambda legs: _vertical(legs, StrategyType.BEAR_CALL_SPREAD),
    StrategyType.BEAR_PUT_SPREAD: lambda legs: _vertical(legs, StrategyType.BEAR_PUT_SPREAD),
    StrategyType.IRON_CONDOR: lambda legs: _iron(legs, StrategyType.IRON_CONDOR),
    StrategyType.IRON_BUTTERFLY: lambda legs: _iron(legs, StrategyType.IRON_BUTTERFLY),
    StrategyType.COLLAR: _collar,
    StrategyType.CUSTOM: generic_payoff_profile,
}


def payoff_profile(strategy_type: StrategyType, legs: Sequence[StrategyLeg]) -> PayoffProfile:
    return _PAYOFF_PROFILES[strategy_type](legs)


def probability_of_profit(
    legs: Sequence[StrategyLeg],
    breakevens: Sequence[float],
    *,
    underlying_price: float,
    volatility: float,
    risk_free_rate: float,
    dividend_yield: float,
    time_to_expiry: Optional[float],
) -> Optional[float]:
    """Risk-neutral probability that the expiry payoff is positive under a lognormal terminal price."""

    if time_to_expiry is None:
        return None
    if time_to_expiry <= 0.0:
        return 1.0 if total_payoff(legs, underlying_price) > 0.0 else 0.0

    spread = volatility * math.sqrt(time_to_expiry)
    centre = math.log(underlying_price) + (risk_free_rate - dividend_yield - 0.5 * volatility**2) * time_to_expiry

    def cdf(level: float) -> float:
        if level <= 0.0:
            return 0.0
        if math.isinf(level):
            return 1.0
        return float(norm.cdf((math.log(level) - centre) / spread))

    bounds = [0.0, *sorted(breakevens), math.inf]
    probability = 0.0
    for lower, upper in zip(bounds, bounds[1:]):
        if math.isinf(upper):
            sample_price = lower * 2.0 if lower > 0.0 else underlying_price
        elif lower == 0.0:
            sample_price = upper / 2.0
        else:
            sample_price = 0.5 * (lower + upper)
        if total_payoff(legs, sample_price) > 0.0:
            probability += cdf(upper) - cdf(lower)
    return min(1.0, max(0.0, probability))


def build_strategy(
    strategy_type: StrategyType,
    underlying_symbol: str,
    legs: Sequence[StrategyLegRequest],
    *,
    underlying_price: float,
    volatility: float,
    risk_free_rate: float = 0.0,
    dividend_yield: float = 0.0,
    as_of: Optional[datetime] = None,
    model: Optional[PricingModel] = None,
    tenant_id: str = "",
    portfolio_id: Optional[str] = None,
    strategy_id: Optional[str] = None,
) -> OptionStrategy:
    """Price every leg, aggregate signed Greeks and derive the expiry payoff metrics."""

    if not isinstance(strategy_type, StrategyType):
        raise ValidationError(f"Unsupported strategy type '{strategy_type}'")
    if not underlying_symbol:
        raise ValidationError("underlying_symbol is required")
    if not legs:
        raise ValidationError("A strategy requires at least one leg")
    for index, leg in enumerate(legs):
        _validate_leg(index, leg)

    timestamp = as_of or datetime.now(UTC)
    pricing_model = model or BlackScholesModel()
    priced = tuple(
        _price_leg(
            index,
            leg,
            underlying_price=underlying_price,
            volatility=volatility,
            risk_free_rate=risk_free_rate,
            dividend_yield=dividend_yield,
            as_of=timestamp,
            model=pricing_model,
        )
        for index, leg in enumerate(legs)
    )

    warnings: List[str] = []
    for leg in priced:
        warnings.extend(f"leg {leg.leg_index}: {message}" for message in leg.warnings)

    expirations = {as_utc(leg.expiration_date) for leg in priced if leg.kind.is_option}
    if len(expirations) > 1:
        if strategy_type is not StrategyType.CUSTOM:
            raise ValidationError(f"{strategy_type.value} requires all option legs to share one expiration")
        warnings.append(
            "legs expire on different dates; payoff metrics treat every leg at its own expiry value"
        )

    profile = payoff_profile(strategy_type, priced)
    option_taus = [leg.time_to_expiry for leg in priced if leg.kind.is_option]
    horizon = min(option_taus) if option_taus else None

    pop = probability_of_profit(
        priced,
        profile.breakevens,
        underlying_price=underlying_price,
        volatility=volatility,
        risk_free_rate=risk_free_rate,
        dividend_yield=dividend_yield,
        time_to_expiry=horizon,
    )

    if profile.max_loss is not None:
        margin_requirement = max(0.0, profile.max_loss)
    else:
        margin_requirement = sum(
            heuristic_initial_margin(leg.exposure * underlying_price, leg.volatility or volatility)
            for leg in priced
            if leg.side is Side.SELL
        )

    risk_reward = None
    if profile.max_profit is not None and profile.max_loss:
        risk_reward = profile.max_profit / profile.max_loss

    net_premium = sum(leg.premium for leg in priced)
    name, description = STRATEGY_NAMES[strategy_type]
    strategy = OptionStrategy(
        strategy_id=strategy_id or uuid4().hex,
        tenant_id=tenant_id,
        portfolio_id=portfolio_id,
        strategy_type=strategy_type,
        strategy_name=name,
        description=description,
        underlying_symbol=underlying_symbol,
        underlying_price=underlying_price,
        legs=priced,
        net_delta=sum(leg.position_delta for leg in priced),
        net_gamma=sum(leg.position_gamma for leg in priced),
        net_theta=sum(leg.position_theta for leg in priced),
        net_vega=sum(leg.position_vega for leg in priced),
        net_rho=sum(leg.position_rho for leg in priced),
        net_premium=net_premium,
        max_profit=profile.max_profit,
        max_loss=profile.max_loss,
        breakevens=profile.breakevens,
        probability_of_profit=pop,
        risk_reward_ratio=risk_reward,
        margin_requirement=margin_requirement,
        buying_power_effect=max(margin_requirement, net_premium),
        payoff_method=profile.method,
        model_used=pricing_model.name,
        created_at=timestamp,
        warnings=tuple(warnings),
    )
    LOGGER.info(
        "Built %s strategy on %s with %d legs (net premium %.4f)",
        strategy_type.value,
        underlying_symbol,
        len(priced),
        strategy.net_premium,
    )
    return strategy
