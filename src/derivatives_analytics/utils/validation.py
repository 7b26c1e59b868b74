"""Validation helpers for pricing inputs."""

from __future__ import annotations

import math
from typing import Final, Optional

from ..core.errors import ValidationError

MAX_VOLATILITY: Final[float] = 5.0
MIN_VOLATILITY: Final[float] = 1e-6
MAX_ABS_RATE: Final[float] = 1.0
MAX_DIVIDEND_YIELD: Final[float] = 1.0


def _require_finite(name: str, value: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be a number") from exc
    if not math.isfinite(number):
        raise ValidationError(f"{name} must be finite")
    return number


def require_positive(name: str, value: Optional[float]) -> float:
    """Return ``value`` as a float, rejecting missing, non-finite or non-positive input."""

    if value is None:
        raise ValidationError(f"{name} is required")
    number = _require_finite(name, value)
    if number <= 0.0:
        raise ValidationError(f"{name} must be strictly positive")
    return number


def validate_pricing_parameters(
    underlying_price: float,
    volatility: float,
    risk_free_rate: float,
    dividend_yield: float,
    time_to_expiry: float,
) -> None:
    """Validate that inputs to a pricing model are well formed.

    ``time_to_expiry`` may be zero or negative: expired contracts are priced at
    intrinsic value with a warning rather than rejected.
    """

    require_positive("underlying_price", underlying_price)
    sigma = require_positive("volatility", volatility)
    if sigma < MIN_VOLATILITY or sigma > MAX_VOLATILITY:
        raise ValidationError("volatility is outside the supported range")

    rate = _require_finite("risk_free_rate", risk_free_rate)
    if abs(rate) > MAX_ABS_RATE:
        raise ValidationError("risk_free_rate must be within [-1, 1]")

    dividend = _require_finite("dividend_yield", dividend_yield)
    if not 0.0 <= dividend <= MAX_DIVIDEND_YIELD:
        raise ValidationError("dividend_yield must be within [0, 1]")

    _require_finite("time_to_expiry", time_to_expiry)
