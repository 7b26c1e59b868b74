"""Numerical floors and sampling statistics for the Monte Carlo estimators."""

from __future__ import annotations

import math
from typing import Iterable, Tuple

import numpy as np

from derivatives_analytics.core.models import PricingInputs

Z_95 = 1.96
MIN_TIME_TO_EXPIRY = 1e-6
MIN_VOLATILITY = 1e-4
MIN_SPOT = 1e-12
ONE_DAY = 1.0 / 365.0


def floored_inputs(inputs: PricingInputs) -> Tuple[float, float, float]:
    """Return ``(spot, tau, sigma)`` raised to the floors used in denominators and roots."""

    return (
        max(float(inputs.underlying_price), MIN_SPOT),
        max(float(inputs.time_to_expiry), MIN_TIME_TO_EXPIRY),
        max(float(inputs.volatility), MIN_VOLATILITY),
    )


def sample_statistics(sample: np.ndarray) -> Tuple[float, float]:
    """Mean and standard error of ``sample``.

    An empty sample has an infinite standard error; a single observation has
    none. A non-finite dispersion is reported as infinite rather than NaN.
    """

    values = np.asarray(sample, dtype=float)
    if values.size == 0:
        return 0.0, math.inf
    mean = float(np.mean(values))
    if values.size == 1:
        return mean, 0.0
    dispersion = float(np.std(values, ddof=1))
    if not math.isfinite(dispersion):
        return mean, math.inf
    return mean, dispersion / math.sqrt(values.size)


def all_finite(arrays: Iterable[np.ndarray]) -> bool:
    return all(bool(np.isfinite(np.asarray(array, dtype=float)).all()) for array in arrays)
