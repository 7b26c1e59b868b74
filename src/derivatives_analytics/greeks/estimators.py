"""Monte Carlo greek estimators: pathwise for delta/vega, finite differences otherwise.

Every estimator returns per-path contributions so the caller can average
antithetic pairs and batches before reducing them to an :class:`Estimate`.
Finite differences reuse the same normal draws (common random numbers) for
the bumped and unbumped valuations.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from derivatives_analytics.core.models import OptionType, PricingInputs

from .stability import ONE_DAY, Z_95, floored_inputs, sample_statistics

SPOT_BUMP = 0.01
RATE_BUMP = 0.01


@dataclass(frozen=True, slots=True)
class Estimate:
    """Sample mean of per-path contributions with its standard error."""

    value: float
    standard_error: float

    @property
    def half_width(self) -> float:
        """Half-width of the two-sided 95% confidence interval."""

        return Z_95 * self.standard_error


def estimate(contributions: np.ndarray) -> Estimate:
    value, error = sample_statistics(contributions)
    return Estimate(value=value, standard_error=error)


def simulate_terminal_prices(
    spot: float,
    inputs: PricingInputs,
    draws: np.ndarray,
    *,
    volatility: float | None = None,
    time_to_expiry: float | None = None,
    risk_free_rate: float | None = None,
) -> np.ndarray:
    """Risk-neutral GBM terminal prices for the supplied draws, with optional overrides."""

    tau = inputs.time_to_expiry if time_to_expiry is None else time_to_expiry
    tau = max(float(tau), 0.0)
    if tau == 0.0:
        return np.full_like(draws, fill_value=spot, dtype=float)
    sigma = inputs.volatility if volatility is None else volatility
    rate = inputs.risk_free_rate if risk_free_rate is None else risk_free_rate
    drift = (rate - inputs.dividend_yield - 0.5 * sigma**2) * tau
    diffusion = sigma * math.sqrt(tau) * draws
    return float(spot) * np.exp(drift + diffusion)


def payoff(option_type: OptionType, strike: float, terminal_prices: np.ndarray) -> np.ndarray:
    if option_type is OptionType.CALL:
        return np.maximum(terminal_prices - strike, 0.0)
    return np.maximum(strike - terminal_prices, 0.0)


def _in_the_money(option_type: OptionType, strike: float, terminal_prices: np.ndarray) -> np.ndarray:
    if option_type is OptionType.CALL:
        return np.greater(terminal_prices, strike)
    return np.less(terminal_prices, strike)


def pathwise_delta(
    option_type: OptionType,
    strike: float,
    inputs: PricingInputs,
    *,
    discount_factor: float,
    terminal_prices: np.ndarray,
) -> np.ndarray:
    """Per-path delta: ``e^{-rT} 1{ITM} S_T / S_0`` (negated for puts)."""

    indicator = _in_the_money(option_type, strike, terminal_prices)
    spot, _, _ = floored_inputs(inputs)
    contributions = discount_factor * np.where(indicator, terminal_prices / spot, 0.0)
    if option_type is OptionType.PUT:
        contributions = -contributions
    return contributions


def pathwise_vega(
    option_type: OptionType,
    strike: float,
    inputs: PricingInputs,
    *,
    discount_factor: float,
    terminal_prices: np.ndarray,
    draws: np.ndarray,
) -> np.ndarray:
    """Per-path vega per one volatility point."""

    indicator = _in_the_money(option_type, strike, terminal_prices)
    _, tau, sigma = floored_inputs(inputs)
    sensitivity = terminal_prices * (math.sqrt(tau) * draws - sigma * tau)
    contributions = discount_factor * np.where(indicator, sensitivity, 0.0)
    if option_type is OptionType.PUT:
        contributions = -contributions
    return contributions / 100.0


def finite_difference_gamma(
    option_type: OptionType,
    strike: float,
    inputs: PricingInputs,
    *,
    draws: np.ndarray,
    discounted_payoffs: np.ndarray,
) -> np.ndarray:
    """Central second difference with a relative spot bump of one percent."""

    spot = inputs.underlying_price
    bump = SPOT_BUMP * spot
    discount_factor = math.exp(-inputs.risk_free_rate * inputs.time_to_expiry)
    up = discount_factor * payoff(
        option_type, strike, simulate_terminal_prices(spot + bump, inputs, draws)
    )
    down = discount_factor * payoff(
        option_type, strike, simulate_terminal_prices(spot - bump, inputs, draws)
    )
    return (up - 2.0 * discounted_payoffs + down) / (bump * bump)


def finite_difference_theta(
    option_type: OptionType,
    strike: float,
    inputs: PricingInputs,
    *,
    draws: np.ndarray,
    discounted_payoffs: np.ndarray,
) -> np.ndarray:
    """Value change over one calendar day of decay."""

    shorter = inputs.time_to_expiry - ONE_DAY
    if shorter <= 0.0:
        intrinsic = payoff(
            option_type, strike, np.full_like(draws, inputs.underlying_price, dtype=float)
        )
        return intrinsic - discounted_payoffs
    discount_factor = math.exp(-inputs.risk_free_rate * shorter)
    decayed = discount_factor * payoff(
        option_type,
        strike,
        simulate_terminal_prices(inputs.underlying_price, inputs, draws, time_to_expiry=shorter),
    )
    return decayed - discounted_payoffs


def finite_difference_rho(
    option_type: OptionType,
    strike: float,
    inputs: PricingInputs,
    *,
    draws: np.ndarray,
) -> np.ndarray:
    """Central difference over a one point rate move, i.e. rho per 1%."""

    tau = inputs.time_to_expiry
    values = []
    for rate in (inputs.risk_free_rate + RATE_BUMP, inputs.risk_free_rate - RATE_BUMP):
        terminal = simulate_terminal_prices(
            inputs.underlying_price, inputs, draws, risk_free_rate=rate
        )
        values.append(math.exp(-rate * tau) * payoff(option_type, strike, terminal))
    up, down = values
    return (up - down) / 2.0
