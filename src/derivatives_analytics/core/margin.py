"""Scenario-grid margin estimation.

This is a SPAN-style approximation: per-position heuristics plus a small
grid of price/volatility scenarios. It is not a certified exchange margin.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import List, Mapping, Optional, Sequence, Tuple
from uuid import uuid4

from .errors import ValidationError

LOGGER = logging.getLogger(__name__)

INITIAL_MARGIN_RATE = 0.15
MAINTENANCE_MARGIN_RATE = 0.10
HEDGE_CREDIT_RATE = 0.10
CALCULATION_METHOD = "scenario_grid_span_approximation"


def heuristic_initial_margin(notional: float, volatility: float) -> float:
    return abs(notional) * INITIAL_MARGIN_RATE * (1.0 + volatility)


def heuristic_maintenance_margin(notional: float, volatility: float) -> float:
    return abs(notional) * MAINTENANCE_MARGIN_RATE * (1.0 + volatility)


class PositionSide(str, Enum):
    LONG = "long"
    SHORT = "short"

    @property
    def sign(self) -> float:
        return 1.0 if self is PositionSide.LONG else -1.0


@dataclass(frozen=True, slots=True)
class MarginPosition:
    instrument_id: str
    quantity: float
    price: float
    side: PositionSide = PositionSide.LONG
    contract_size: float = 1.0
    underlying_symbol: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.instrument_id:
            raise ValidationError("instrument_id must be a non-empty string")
        if not isinstance(self.side, PositionSide):
            raise ValidationError("side must be one of: long, short")
        for name in ("quantity", "price", "contract_size"):
            value = getattr(self, name)
            if value is None or not math.isfinite(value) or value <= 0:
                raise ValidationError(f"{name} must be strictly positive for {self.instrument_id}")

    @property
    def signed_units(self) -> float:
        return self.side.sign * self.quantity * self.contract_size


@dataclass(frozen=True, slots=True)
class MarginScenario:
    """Relative price shift, absolute volatility shift and horizon in days."""

    name: str
    price_shift: float
    volatility_shift: float = 0.0
    days_forward: int = 0


DEFAULT_SCENARIOS: Tuple[MarginScenario, ...] = (
    MarginScenario("base", 0.0, 0.0, 0),
    MarginScenario("up_15", 0.15, 0.05, 1),
    MarginScenario("down_15", -0.15, 0.05, 1),
)


@dataclass(frozen=True, slots=True)
class PositionMargin:
    instrument_id: str
    side: PositionSide
    notional: float
    underlying_price: float
    volatility: float
    initial_margin: float
    maintenance_margin: float
    risk_contribution: float
    hedge_credit: float


@dataclass(frozen=True, slots=True)
class ScenarioResult:
    name: str
    price_shift: float
    volatility_shift: float
    days_forward: int
    pnl: float
    loss: float


@dataclass(frozen=True, slots=True)
class MarginCalculationResult:
    """Aggregate margin estimate; ``portfolio_margin`` is the worst scenario loss."""

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
    positions: Tuple[PositionMargin, ...]
    scenarios: Tuple[ScenarioResult, ...]
    calculation_method: str = CALCULATION_METHOD
    warnings: Tuple[str, ...] = ()


def _position_margin(position: MarginPosition, underlying_price: float, volatility: float) -> PositionMargin:
    notional = abs(position.quantity * position.price * position.contract_size)
    initial = heuristic_initial_margin(notional, volatility)
    return PositionMargin(
        instrument_id=position.instrument_id,
        side=position.side,
        notional=notional,
        underlying_price=underlying_price,
        volatility=volatility,
        initial_margin=initial,
        maintenance_margin=heuristic_maintenance_margin(notional, volatility),
        risk_contribution=notional * volatility,
        hedge_credit=HEDGE_CREDIT_RATE * initial if position.side is PositionSide.SHORT else 0.0,
    )


def _run_scenario(
    scenario: MarginScenario,
    positions: Sequence[MarginPosition],
    prices: Sequence[float],
) -> ScenarioResult:
    # P&L of moving the reference price by the relative shift; zero shift is zero P&L
    pnl = sum(
        position.signed_units * price * scenario.price_shift
        for position, price in zip(positions, prices)
    )
    return ScenarioResult(
        name=scenario.name,
        price_shift=scenario.price_shift,
        volatility_shift=scenario.volatility_shift,
        days_forward=scenario.days_forward,
        pnl=pnl,
        loss=max(0.0, -pnl),
    )


def estimate_margin(
    positions: Sequence[MarginPosition],
    underlying_prices: Mapping[str, float],
    volatilities: Mapping[str, float],
    scenarios: Optional[Sequence[MarginScenario]] = None,
    *,
    request_id: Optional[str] = None,
    as_of: Optional[datetime] = None,
) -> MarginCalculationResult:
    """Estimate margin for ``positions``.

    ``underlying_prices`` and ``volatilities`` are keyed by instrument id. A
    missing underlying price falls back to the position price; a missing
    volatility is an error.
    """

    if not positions:
        raise ValidationError("At least one position is required for a margin calculation")
    grid = tuple(scenarios) if scenarios else DEFAULT_SCENARIOS

    warnings: List[str] = []
    prices: List[float] = []
    margins: List[PositionMargin] = []
    for position in positions:
        volatility = volatilities.get(position.instrument_id)
        if volatility is None:
            raise ValidationError(f"No volatility supplied for position {position.instrument_id}")
        if not math.isfinite(volatility) or volatility <= 0:
            raise ValidationError(f"volatility for {position.instrument_id} must be strictly positive")
        price = underlying_prices.get(position.instrument_id)
        if price is None:
            price = position.price
            warnings.append(
                f"underlying price missing for {position.instrument_id}; position price used"
            )
        prices.append(price)
        margins.append(_position_margin(position, price, volatility))

    results = tuple(_run_scenario(scenario, positions, prices) for scenario in grid)
    worst = max(results, key=lambda result: result.loss)

    initial = sum(item.initial_margin for item in margins)
    hedge_credit = sum(item.hedge_credit for item in margins)
    net_liquidation = sum(position.signed_units * price for position, price in zip(positions, prices))
    total_notional = sum(item.notional for item in margins)

    result = MarginCalculationResult(
        request_id=request_id or uuid4().hex,
        calculated_at=as_of or datetime.now(UTC),
        initial_margin=initial,
        maintenance_margin=sum(item.maintenance_margin for item in margins),
        hedge_credit=hedge_credit,
        net_initial_margin=initial - hedge_credit,
        portfolio_margin=worst.loss,
        net_liquidation_value=net_liquidation,
        excess_liquidity=net_liquidation - worst.loss,
        variation_margin=sum(
            position.signed_units * (price - position.price) for position, price in zip(positions, prices)
        ),
        portfolio_risk=math.sqrt(sum(item.risk_contribution**2 for item in margins)),
        concentration_risk=(
            max(item.notional for item in margins) / total_notional if total_notional > 0 else 0.0
        ),
        worst_scenario=worst.name,
        positions=tuple(margins),
        scenarios=results,
        warnings=tuple(warnings),
    )
    LOGGER.info(
        "Margin estimate for %d positions: portfolio margin %.2f (worst scenario %s)",
        len(positions),
        result.portfolio_margin,
        result.worst_scenario,
    )
    return result
