"""Daily mark-to-market valuation with Greeks-based P&L attribution."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from uuid import uuid4

from .errors import ValidationError
from .models import OptionTerms, PricingInputs, PricingResult, as_utc

LOGGER = logging.getLogger(__name__)

MISSING_MARKET_PRICE_WARNING = "No market price available; theoretical price used as market price"


@dataclass(frozen=True, slots=True)
class MarkToMarketValuation:
    """One link of an instrument's append-only valuation chain.

    P&L figures are per unit of the instrument. ``residual_pnl`` is whatever
    the Greeks do not explain and is always reported.
    """

    valuation_id: str
    tenant_id: str
    instrument_id: str
    valuation_date: datetime
    market_price: float
    theoretical_price: float
    intrinsic_value: float
    time_value: float
    underlying_price: float
    volatility: float
    risk_free_rate: float
    dividend_yield: float
    time_to_expiry: float
    delta: float
    gamma: float
    theta: float
    vega: float
    rho: float
    daily_pnl: float
    delta_pnl: float
    gamma_pnl: float
    theta_pnl: float
    vega_pnl: float
    rho_pnl: float
    residual_pnl: float
    model_used: str
    unrealized_pnl: Optional[float] = None
    inception_pnl: Optional[float] = None
    previous_valuation_id: Optional[str] = None
    previous_valuation_date: Optional[datetime] = None
    warnings: Tuple[str, ...] = ()

    @property
    def explained_pnl(self) -> float:
        return self.delta_pnl + self.gamma_pnl + self.theta_pnl + self.vega_pnl + self.rho_pnl


def attribute_pnl(
    option: OptionTerms,
    pricing: PricingResult,
    inputs: PricingInputs,
    previous: Optional[MarkToMarketValuation],
    *,
    tenant_id: str,
    instrument_id: str,
    valuation_date: datetime,
    market_price: Optional[float] = None,
    entry_price: Optional[float] = None,
    valuation_id: Optional[str] = None,
) -> MarkToMarketValuation:
    """Value ``option`` and split the move since ``previous`` into Greek components.

    Attribution uses the current Greeks; theta is per day, so the theta
    component scales with the calendar days elapsed since the predecessor.
    """

    warnings: List[str] = list(pricing.warnings)
    if market_price is None:
        market_price = pricing.price
        warnings.append(MISSING_MARKET_PRICE_WARNING)
    elif market_price < 0:
        raise ValidationError("market_price must not be negative")

    valuation_date = as_utc(valuation_date)
    intrinsic = option.intrinsic_value(inputs.underlying_price)

    daily = delta_pnl = gamma_pnl = theta_pnl = vega_pnl = rho_pnl = 0.0
    previous_id = previous_date = None
    if previous is not None:
        previous_date = as_utc(previous.valuation_date)
        if valuation_date <= previous_date:
            raise ValidationError(
                f"Valuation date {valuation_date.isoformat()} must be after the previous "
                f"valuation at {previous_date.isoformat()}"
            )
        previous_id = previous.valuation_id
        elapsed_days = (valuation_date - previous_date) / timedelta(days=1)
        spot_move = inputs.underlying_price - previous.underlying_price

        daily = market_price - previous.market_price
        delta_pnl = pricing.delta * spot_move
        gamma_pnl = 0.5 * pricing.gamma * spot_move**2
        theta_pnl = pricing.theta * elapsed_days
        vega_pnl = pricing.vega * (inputs.volatility - previous.volatility) * 100.0
        rho_pnl = pricing.rho * (inputs.risk_free_rate - previous.risk_free_rate) * 100.0

    residual = daily - (delta_pnl + gamma_pnl + theta_pnl + vega_pnl + rho_pnl)
    unrealized = market_price - entry_price if entry_price is not None else None

    return MarkToMarketValuation(
        valuation_id=valuation_id or uuid4().hex,
        tenant_id=tenant_id,
        instrument_id=instrument_id,
        valuation_date=valuation_date,
        market_price=market_price,
        theoretical_price=pricing.price,
        intrinsic_value=intrinsic,
        time_value=pricing.price - intrinsic,
        underlying_price=inputs.underlying_price,
        volatility=inputs.volatility,
        risk_free_rate=inputs.risk_free_rate,
        dividend_yield=inputs.dividend_yield,
        time_to_expiry=inputs.time_to_expiry,
        delta=pricing.delta,
        gamma=pricing.gamma,
        theta=pricing.theta,
        vega=pricing.vega,
        rho=pricing.rho,
        daily_pnl=daily,
        delta_pnl=delta_pnl,
        gamma_pnl=gamma_pnl,
        theta_pnl=theta_pnl,
        vega_pnl=vega_pnl,
        rho_pnl=rho_pnl,
        residual_pnl=residual,
        model_used=pricing.model_used,
        unrealized_pnl=unrealized,
        inception_pnl=unrealized,
        previous_valuation_id=previous_id,
        previous_valuation_date=previous_date,
        warnings=tuple(warnings),
    )
