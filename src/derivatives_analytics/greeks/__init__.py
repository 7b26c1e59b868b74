"""Per-path Monte Carlo greek estimators and their numerical guards."""

from .estimators import (
    Estimate,
    estimate,
    finite_difference_gamma,
    finite_difference_rho,
    finite_difference_theta,
    pathwise_delta,
    pathwise_vega,
    payoff,
    simulate_terminal_prices,
)
from .stability import ONE_DAY, Z_95, all_finite, floored_inputs, sample_statistics

__all__ = [
    "Estimate",
    "estimate",
    "finite_difference_gamma",
    "finite_difference_rho",
    "finite_difference_theta",
    "pathwise_delta",
    "pathwise_vega",
    "payoff",
    "simulate_terminal_prices",
    "ONE_DAY",
    "Z_95",
    "all_finite",
    "floored_inputs",
    "sample_statistics",
]
