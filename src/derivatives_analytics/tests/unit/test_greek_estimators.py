from __future__ import annotations

import math

import numpy as np
import pytest

from derivatives_analytics.core.models import OptionType, PricingInputs
from derivatives_analytics.greeks import (
    Z_95,
    all_finite,
    estimate,
    floored_inputs,
    pathwise_delta,
    pathwise_vega,
    payoff,
    simulate_terminal_prices,
)

INPUTS = PricingInputs(underlying_price=100.0, volatility=0.2, risk_free_rate=0.05, time_to_expiry=1.0)


def test_estimate_reports_mean_and_confidence() -> None:
    result = estimate(np.array([1.0, 2.0, 3.0, 4.0]))
    assert result.value == pytest.approx(2.5)
    assert result.standard_error == pytest.approx(np.std([1, 2, 3, 4], ddof=1) / 2.0)
    assert result.half_width == pytest.approx(Z_95 * result.standard_error)

    assert estimate(np.array([])).standard_error == math.inf
    assert estimate(np.array([7.0])).standard_error == 0.0


def test_floors_and_finiteness() -> None:
    spot, tau, sigma = floored_inputs(
        PricingInputs(underlying_price=100.0, volatility=1e-6, risk_free_rate=0.0, time_to_expiry=0.0)
    )
    assert spot == 100.0
    assert tau == pytest.approx(1e-6)
    assert sigma == pytest.approx(1e-4)
    assert all_finite([np.ones(3), np.zeros(2)])
    assert not all_finite([np.array([1.0, np.nan])])


def test_terminal_prices_at_expiry_equal_spot() -> None:
    draws = np.array([-1.0, 0.0, 1.0])
    terminal = simulate_terminal_prices(100.0, INPUTS, draws, time_to_expiry=0.0)
    assert terminal.tolist() == [100.0, 100.0, 100.0]
    assert payoff(OptionType.PUT, 105.0, terminal).tolist() == [5.0, 5.0, 5.0]


def test_pathwise_estimators_match_closed_form() -> None:
    draws = np.random.default_rng(3).standard_normal(200_000)
    discount = math.exp(-INPUTS.risk_free_rate)
    terminal = simulate_terminal_prices(100.0, INPUTS, draws)

    delta = pathwise_delta(
        OptionType.CALL, 100.0, INPUTS, discount_factor=discount, terminal_prices=terminal
    )
    vega = pathwise_vega(
        OptionType.CALL, 100.0, INPUTS, discount_factor=discount, terminal_prices=terminal, draws=draws
    )
    assert float(np.mean(delta)) == pytest.approx(0.6368, abs=0.01)
    assert float(np.mean(vega)) == pytest.approx(0.37524, abs=0.01)
