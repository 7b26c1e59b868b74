"""Newton-Raphson implied volatility solver, trailing-history statistics and surfaces."""

from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from numpy.random import SeedSequence

from ..greeks.stability import Z_95
from ..utils.numerics import percentile_rank, sample_standard_deviation
from ..utils.validation import require_positive
from .models import ImpliedVolatilityAnalysis, OptionTerms, OptionType, PricingInputs, as_utc
from .pricing_models import BlackScholesModel, MonteCarloModel, PricingModel

LOGGER = logging.getLogger(__name__)

INITIAL_VOLATILITY = 0.3
MIN_VOLATILITY = 0.001
MAX_VOLATILITY = 3.0
PRICE_TOLERANCE = 1e-4
MAX_ITERATIONS = 100
VEGA_FLOOR = 1e-10
FD_VOL_BUMP = 0.01


@dataclass(slots=True)
class ImpliedVolatilityResult:
    """Outcome of a single solve; ``volatility`` is the best estimate even when not converged."""

    volatility: float
    iterations: int
    converged: bool
    price_error: float
    model_used: str
    warnings: List[str] = field(default_factory=list)


@dataclass(slots=True)
class IVHistoryStatistics:
    rank: Optional[float]
    percentile: Optional[float]
    standard_deviation: Optional[float]
    lower_band: Optional[float]
    upper_band: Optional[float]
    data_points: int


def _price_and_vega(
    model: PricingModel,
    option: OptionTerms,
    inputs: PricingInputs,
) -> tuple[float, float]:
    """Model price and vega per unit of volatility."""

    result = model.price_and_greeks(option, inputs)
    if isinstance(model, BlackScholesModel):
        return result.price, result.vega * 100.0
    bumped = dataclasses.replace(inputs, volatility=inputs.volatility + FD_VOL_BUMP)
    bumped_price = model.price_and_greeks(option, bumped).price
    return result.price, (bumped_price - result.price) / FD_VOL_BUMP


def solve_implied_volatility(
    option: OptionTerms,
    market_price: float,
    underlying_price: float,
    risk_free_rate: float,
    dividend_yield: float,
    time_to_expiry: float,
    model: Optional[PricingModel] = None,
) -> ImpliedVolatilityResult:
    """Invert ``model`` for the volatility that reproduces ``market_price``.

    The iterate is clamped to ``[0.001, 3.0]``. Hitting the iteration cap or a
    numerically zero vega stops the search and returns the closest estimate
    seen, with a warning, instead of raising.
    """

    target = require_positive("market_price", market_price)
    pricing_model: PricingModel = model or BlackScholesModel()
    if isinstance(pricing_model, MonteCarloModel) and pricing_model.seed is None:
        # freeze the seed so bumped and unbumped prices share random numbers
        entropy = SeedSequence().entropy
        pricing_model = dataclasses.replace(pricing_model, seed=entropy)

    sigma = INITIAL_VOLATILITY
    best_sigma = sigma
    best_error = math.inf
    warnings: List[str] = []
    converged = False
    iterations = 0

    while iterations < MAX_ITERATIONS:
        iterations += 1
        inputs = PricingInputs(
            underlying_price=underlying_price,
            volatility=sigma,
            risk_free_rate=risk_free_rate,
            dividend_yield=dividend_yield,
            time_to_expiry=time_to_expiry,
        )
        price, vega = _price_and_vega(pricing_model, option, inputs)
        difference = price - target
        if abs(difference) < best_error:
            best_error = abs(difference)
            best_sigma = sigma

        if abs(difference) < PRICE_TOLERANCE:
            converged = True
            break

        if abs(vega) < VEGA_FLOOR:
            warnings.append(
                f"vega is numerically zero at volatility {sigma:.4f}; solver stopped after "
                f"{iterations} iterations"
            )
            break

        sigma = min(MAX_VOLATILITY, max(MIN_VOLATILITY, sigma - difference / vega))
    else:
        warnings.append(
            f"implied volatility did not converge within {MAX_ITERATIONS} iterations; "
            f"best price error {best_error:.6f}"
        )

    if not converged:
        LOGGER.warning(
            "Implied volatility solve stopped without convergence (sigma=%.6f, error=%.6f)",
            best_sigma,
            best_error,
        )

    return ImpliedVolatilityResult(
        volatility=best_sigma,
        iterations=iterations,
        converged=converged,
        price_error=best_error,
        model_used=pricing_model.name,
        warnings=warnings,
    )


def iv_history_statistics(solved: float, history: Sequence[float]) -> IVHistoryStatistics:
    """Rank ``solved`` within ``history`` and build a +/-1.96 sigma band around it."""

    sample = [float(value) for value in history]
    rank = percentile_rank(solved, sample)
    std = sample_standard_deviation(sample)
    lower = upper = None
    if std is not None:
        lower = solved - Z_95 * std
        upper = solved + Z_95 * std
    return IVHistoryStatistics(
        rank=rank,
        percentile=rank / 100.0 if rank is not None else None,
        standard_deviation=std,
        lower_band=lower,
        upper_band=upper,
        data_points=len(sample),
    )


@dataclass(frozen=True, slots=True)
class SurfacePoint:
    instrument_id: str
    option_type: Optional[OptionType]
    strike_price: float
    expiration_date: datetime
    time_to_expiry: float
    implied_volatility: float
    converged: bool
    analysis_date: datetime


@dataclass(frozen=True, slots=True)
class VolatilitySurface:
    """Latest solved implied volatility of every analysed contract on one underlying.

    Points are ordered by expiry, then strike. ``as_of`` is the newest
    analysis date contributing to the surface.
    """

    underlying_symbol: str
    points: Tuple[SurfacePoint, ...]
    average_volatility: float
    min_volatility: float
    max_volatility: float
    as_of: datetime

    @property
    def expirations(self) -> Tuple[datetime, ...]:
        return tuple(sorted({point.expiration_date for point in self.points}))

    @property
    def strikes(self) -> Tuple[float, ...]:
        return tuple(sorted({point.strike_price for point in self.points}))


def build_volatility_surface(
    underlying_symbol: str, analyses: Iterable[ImpliedVolatilityAnalysis]
) -> Optional[VolatilitySurface]:
    """Aggregate stored analyses into a surface; ``None`` when nothing matches."""

    latest: Dict[str, ImpliedVolatilityAnalysis] = {}
    for analysis in analyses:
        if analysis.underlying_symbol != underlying_symbol:
            continue
        if analysis.strike_price is None or analysis.expiration_date is None:
            continue
        current = latest.get(analysis.instrument_id)
        if current is None or as_utc(analysis.analysis_date) > as_utc(current.analysis_date):
            latest[analysis.instrument_id] = analysis
    if not latest:
        return None

    points = sorted(
        (
            SurfacePoint(
                instrument_id=analysis.instrument_id,
                option_type=analysis.option_type,
                strike_price=analysis.strike_price,
                expiration_date=as_utc(analysis.expiration_date),
                time_to_expiry=analysis.time_to_expiry,
                implied_volatility=analysis.implied_volatility,
                converged=analysis.converged,
                analysis_date=as_utc(analysis.analysis_date),
            )
            for analysis in latest.values()
        ),
        key=lambda point: (point.expiration_date, point.strike_price, point.instrument_id),
    )
    volatilities = [point.implied_volatility for point in points]
    return VolatilitySurface(
        underlying_symbol=underlying_symbol,
        points=tuple(points),
        average_volatility=math.fsum(volatilities) / len(volatilities),
        min_volatility=min(volatilities),
        max_volatility=max(volatilities),
        as_of=max(point.analysis_date for point in points),
    )
