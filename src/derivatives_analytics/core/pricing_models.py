# mypy: ignore-errors
"""Pricing model implementations behind the :class:`PricingModel` protocol.

Three variants are provided: the closed-form Black-Scholes model with a
continuous dividend yield, a Cox-Ross-Rubinstein binomial tree and a Monte
Carlo simulator. Every model reports theta per calendar day and vega/rho per
one percentage point.

Binomial Greeks are finite differences on the tree root and carry a
discretisation error of roughly ``O(1/steps)``; prefer the closed form when
exact first-order Greeks of a European vanilla option are required.
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Union, runtime_checkable

import numpy as np
from numpy.random import SeedSequence

from ..greeks.estimators import (
    estimate,
    finite_difference_gamma,
    finite_difference_rho,
    finite_difference_theta,
    pathwise_delta,
    pathwise_vega,
    payoff,
    simulate_terminal_prices,
)
from ..greeks.stability import ONE_DAY, all_finite
from ..utils.numerics import box_muller_normals
from .errors import ValidationError
from .models import ExerciseStyle, OptionTerms, OptionType, PricingInputs, PricingMethod, PricingResult

LOGGER = logging.getLogger(__name__)

SQRT_TWO = math.sqrt(2.0)
INV_SQRT_TWO_PI = 1.0 / math.sqrt(2.0 * math.pi)
EXPIRED_WARNING = "Option has expired; Greeks may not be meaningful"
SPOT_BUMP = 0.01
VOL_BUMP = 0.01
RATE_BUMP = 0.01
DEFAULT_BINOMIAL_STEPS = 100
DEFAULT_MONTE_CARLO_PATHS = 20_000


def _norm_pdf(value: float) -> float:
    return INV_SQRT_TWO_PI * math.exp(-0.5 * value * value)


def _norm_cdf(value: float) -> float:
    return 0.5 * math.erfc(-value / SQRT_TWO)


@runtime_checkable
class PricingModel(Protocol):
    """Capability shared by every pricing model."""

    @property
    def method(self) -> PricingMethod: ...

    @property
    def name(self) -> str: ...

    def price_and_greeks(self, option: OptionTerms, inputs: PricingInputs) -> PricingResult: ...


def expired_result(option: OptionTerms, inputs: PricingInputs, model_name: str) -> PricingResult:
    """Intrinsic value with step-function delta for contracts at or past expiry."""

    spot = inputs.underlying_price
    if option.option_type is OptionType.CALL:
        delta = 1.0 if spot > option.strike_price else 0.0
    else:
        delta = -1.0 if spot < option.strike_price else 0.0
    return PricingResult(
        price=option.intrinsic_value(spot),
        delta=delta,
        gamma=0.0,
        theta=0.0,
        vega=0.0,
        rho=0.0,
        model_used=model_name,
        warnings=[EXPIRED_WARNING],
    )


def _early_exercise_warning(option: OptionTerms, model_name: str) -> Optional[str]:
    if option.exercise_style is ExerciseStyle.EUROPEAN:
        return None
    return (
        f"{model_name} prices {option.exercise_style.value} exercise as european; "
        "early exercise premium is ignored"
    )


@dataclass(slots=True)
class BlackScholesModel:
    """Closed-form Black-Scholes-Merton model with higher-order Greeks."""

    @property
    def method(self) -> PricingMethod:
        return PricingMethod.BLACK_SCHOLES

    @property
    def name(self) -> str:
        return "black_scholes"

    def price_and_greeks(self, option: OptionTerms, inputs: PricingInputs) -> PricingResult:
        if inputs.time_to_expiry <= 0.0:
            return expired_result(option, inputs, self.name)

        spot = inputs.underlying_price
        strike = option.strike_price
        tau = inputs.time_to_expiry
        sigma = inputs.volatility
        rate = inputs.risk_free_rate
        dividend = inputs.dividend_yield

        sqrt_t = math.sqrt(tau)
        sigma_sqrt_t = sigma * sqrt_t
        discount_dividend = math.exp(-dividend * tau)
        discount_rate = math.exp(-rate * tau)

        d1 = (math.log(spot / strike) + (rate - dividend + 0.5 * sigma**2) * tau) / sigma_sqrt_t
        d2 = d1 - sigma_sqrt_t
        pdf = _norm_pdf(d1)

        gamma = discount_dividend * pdf / (spot * sigma_sqrt_t)
        vega_unit = spot * discount_dividend * pdf * sqrt_t
        decay = -spot * discount_dividend * pdf * sigma / (2.0 * sqrt_t)
        carry = (2.0 * (rate - dividend) * tau - d2 * sigma_sqrt_t) / (2.0 * tau * sigma_sqrt_t)

        if option.option_type is OptionType.CALL:
            cdf_d1 = _norm_cdf(d1)
            cdf_d2 = _norm_cdf(d2)
            price = spot * discount_dividend * cdf_d1 - strike * discount_rate * cdf_d2
            delta = discount_dividend * cdf_d1
            theta_annual = (
                decay
                - rate * strike * discount_rate * cdf_d2
                + dividend * spot * discount_dividend * cdf_d1
            )
            rho_unit = strike * tau * discount_rate * cdf_d2
            charm_annual = dividend * discount_dividend * cdf_d1 - discount_dividend * pdf * carry
        else:
            cdf_minus_d1 = _norm_cdf(-d1)
            cdf_minus_d2 = _norm_cdf(-d2)
            price = strike * discount_rate * cdf_minus_d2 - spot * discount_dividend * cdf_minus_d1
            delta = -discount_dividend * cdf_minus_d1
            theta_annual = (
                decay
                + rate * strike * discount_rate * cdf_minus_d2
                - dividend * spot * discount_dividend * cdf_minus_d1
            )
            rho_unit = -strike * tau * discount_rate * cdf_minus_d2
            charm_annual = -dividend * discount_dividend * cdf_minus_d1 - discount_dividend * pdf * carry

        price = max(0.0, price)
        vanna_unit = -discount_dividend * pdf * d2 / sigma
        volga_unit = vega_unit * d1 * d2 / sigma
        color_annual = (
            -discount_dividend
            * pdf
            / (2.0 * spot * tau * sigma_sqrt_t)
            * (2.0 * dividend * tau + 1.0 + d1 * (2.0 * (rate - dividend) * tau - d2 * sigma_sqrt_t) / sigma_sqrt_t)
        )

        warnings: List[str] = []
        exercise_warning = _early_exercise_warning(option, self.name)
        if exercise_warning:
            warnings.append(exercise_warning)

        return PricingResult(
            price=price,
            delta=delta,
            gamma=gamma,
            theta=theta_annual / 365.0,
            vega=vega_unit / 100.0,
            rho=rho_unit / 100.0,
            model_used=self.name,
            lambda_=delta * spot / price if price > 0.0 else None,
            vanna=vanna_unit / 100.0,
            charm=charm_annual / 365.0,
            color=color_annual / 365.0,
            volga=volga_unit / 10_000.0,
            warnings=warnings,
        )


@dataclass(slots=True)
class BinomialModel:
    """Recombining Cox-Ross-Rubinstein tree; American contracts exercise early."""

    steps: int = DEFAULT_BINOMIAL_STEPS

    def __post_init__(self) -> None:
        if self.steps < 1:
            raise ValidationError("binomial steps must be at least 1")

    @property
    def method(self) -> PricingMethod:
        return PricingMethod.BINOMIAL

    @property
    def name(self) -> str:
        return f"binomial_{self.steps}"

    def _probability(self, volatility: float, rate: float, dividend: float, tau: float) -> float:
        delta_t = tau / self.steps
        up = math.exp(volatility * math.sqrt(delta_t))
        down = 1.0 / up
        growth = math.exp((rate - dividend) * delta_t)
        return (growth - down) / (up - down)

    def tree_value(
        self,
        option: OptionTerms,
        spot: float,
        volatility: float,
        rate: float,
        dividend: float,
        tau: float,
    ) -> float:
        """Backward induction over the tree; intrinsic value once ``tau <= 0``."""

        if tau <= 0.0:
            return option.intrinsic_value(spot)

        steps = self.steps
        delta_t = tau / steps
        log_step = volatility * math.sqrt(delta_t)
        probability = min(1.0, max(0.0, self._probability(volatility, rate, dividend, tau)))
        discount = math.exp(-rate * delta_t)
        early_exercise = option.exercise_style is ExerciseStyle.AMERICAN

        prices = spot * np.exp(log_step * (2.0 * np.arange(steps + 1) - steps))
        values = payoff(option.option_type, option.strike_price, prices)

        for index in range(steps - 1, -1, -1):
            values = discount * (probability * values[1:] + (1.0 - probability) * values[:-1])
            if early_exercise:
                prices = spot * np.exp(log_step * (2.0 * np.arange(index + 1) - index))
                exercise_value = payoff(option.option_type, option.strike_price, prices)
                values = np.maximum(values, exercise_value)

        return float(values[0])

    def price_and_greeks(self, option: OptionTerms, inputs: PricingInputs) -> PricingResult:
        if inputs.time_to_expiry <= 0.0:
            result = expired_result(option, inputs, self.name)
            result.steps = self.steps
            return result

        spot = inputs.underlying_price
        sigma = inputs.volatility
        rate = inputs.risk_free_rate
        dividend = inputs.dividend_yield
        tau = inputs.time_to_expiry

        def value(
            *,
            spot_: float = spot,
            sigma_: float = sigma,
            rate_: float = rate,
            tau_: float = tau,
        ) -> float:
            return self.tree_value(option, spot_, sigma_, rate_, dividend, tau_)

        base = value()
        spot_bump = SPOT_BUMP * spot
        up = value(spot_=spot + spot_bump)
        down = value(spot_=spot - spot_bump)
        delta = (up - down) / (2.0 * spot_bump)
        gamma = (up - 2.0 * base + down) / (spot_bump * spot_bump)

        theta = value(tau_=tau - ONE_DAY) - base

        if sigma > VOL_BUMP:
            vega = (value(sigma_=sigma + VOL_BUMP) - value(sigma_=sigma - VOL_BUMP)) / 2.0
        else:
            vega = value(sigma_=sigma + VOL_BUMP) - base

        rho = (value(rate_=rate + RATE_BUMP) - value(rate_=rate - RATE_BUMP)) / 2.0

        warnings: List[str] = []
        probability = self._probability(sigma, rate, dividend, tau)
        if not 0.0 <= probability <= 1.0:
            warnings.append(
                f"risk-neutral probability {probability:.4f} clamped to [0, 1]; increase steps"
            )
        if option.exercise_style is ExerciseStyle.BERMUDAN:
            warnings.append("bermudan exercise schedule is not modelled; priced as european")

        return PricingResult(
            price=base,
            delta=delta,
            gamma=gamma,
            theta=theta,
            vega=vega,
            rho=rho,
            model_used=self.name,
            lambda_=delta * spot / base if base > 0.0 else None,
            warnings=warnings,
            steps=self.steps,
        )


_CONTRIBUTION_KEYS = ("price", "delta", "gamma", "theta", "vega", "rho")


@dataclass(slots=True)
class MonteCarloModel:
    """Risk-neutral GBM simulation with Box-Muller draws.

    Paths are split into batches, each seeded from a child of one
    ``SeedSequence`` so that the result for a given ``seed`` does not depend on
    ``workers``. ``seed=None`` draws fresh entropy on every call.
    """

    paths: int = DEFAULT_MONTE_CARLO_PATHS
    seed: Optional[int] = None
    antithetic: bool = True
    batch_size: int = 10_000
    workers: int = 1

    def __post_init__(self) -> None:
        if self.paths < 2:
            raise ValidationError("monte carlo paths must be at least 2")
        if self.batch_size < 2:
            raise ValidationError("monte carlo batch_size must be at least 2")
        if self.workers < 1:
            raise ValidationError("monte carlo workers must be at least 1")

    @property
    def method(self) -> PricingMethod:
        return PricingMethod.MONTE_CARLO

    @property
    def name(self) -> str:
        return f"monte_carlo_{self.paths}"

    def _batch_sizes(self) -> List[int]:
        total = self.paths + (self.paths % 2 if self.antithetic else 0)
        batch = self.batch_size + (self.batch_size % 2 if self.antithetic else 0)
        sizes = [batch] * (total // batch)
        if total % batch:
            sizes.append(total % batch)
        return sizes

    def _simulate_batch(
        self,
        option: OptionTerms,
        inputs: PricingInputs,
        seed_sequence: SeedSequence,
        size: int,
    ) -> Dict[str, np.ndarray]:
        generator = np.random.default_rng(seed_sequence)
        if self.antithetic:
            half = box_muller_normals(generator, size // 2)
            draws = np.concatenate((half, -half))
        else:
            draws = box_muller_normals(generator, size)

        discount_factor = math.exp(-inputs.risk_free_rate * inputs.time_to_expiry)
        terminal = simulate_terminal_prices(inputs.underlying_price, inputs, draws)
        discounted = discount_factor * payoff(option.option_type, option.strike_price, terminal)

        strike = option.strike_price
        contributions = {
            "price": discounted,
            "delta": pathwise_delta(
                option.option_type,
                strike,
                inputs,
                discount_factor=discount_factor,
                terminal_prices=terminal,
            ),
            "vega": pathwise_vega(
                option.option_type,
                strike,
                inputs,
                discount_factor=discount_factor,
                terminal_prices=terminal,
                draws=draws,
            ),
            "gamma": finite_difference_gamma(
                option.option_type, strike, inputs, draws=draws, discounted_payoffs=discounted
            ),
            "theta": finite_difference_theta(
                option.option_type, strike, inputs, draws=draws, discounted_payoffs=discounted
            ),
            "rho": finite_difference_rho(option.option_type, strike, inputs, draws=draws),
        }
        if self.antithetic:
            midpoint = draws.size // 2
            contributions = {
                key: 0.5 * (values[:midpoint] + values[midpoint:])
                for key, values in contributions.items()
            }
        return contributions

    def price_and_greeks(self, option: OptionTerms, inputs: PricingInputs) -> PricingResult:
        if inputs.time_to_expiry <= 0.0:
            result = expired_result(option, inputs, self.name)
            result.paths = self.paths
            return result

        sizes = self._batch_sizes()
        children = SeedSequence(self.seed).spawn(len(sizes))
        jobs = list(zip(children, sizes))

        if self.workers > 1 and len(jobs) > 1:
            with ThreadPoolExecutor(
                max_workers=min(self.workers, len(jobs)),
                thread_name_prefix="monte-carlo",
            ) as pool:
                batches = list(
                    pool.map(lambda job: self._simulate_batch(option, inputs, *job), jobs)
                )
        else:
            batches = [self._simulate_batch(option, inputs, *job) for job in jobs]

        merged = {
            key: np.concatenate([batch[key] for batch in batches]) for key in _CONTRIBUTION_KEYS
        }
        summaries = {key: estimate(values) for key, values in merged.items()}
        price_summary = summaries["price"]
        half_width = price_summary.half_width

        warnings: List[str] = []
        if not all_finite(merged.values()):
            warnings.append("non-finite Monte Carlo contributions detected")
        exercise_warning = _early_exercise_warning(option, self.name)
        if exercise_warning:
            warnings.append(exercise_warning)

        price = price_summary.value
        delta = summaries["delta"].value
        return PricingResult(
            price=price,
            delta=delta,
            gamma=summaries["gamma"].value,
            theta=summaries["theta"].value,
            vega=summaries["vega"].value,
            rho=summaries["rho"].value,
            model_used=self.name,
            lambda_=delta * inputs.underlying_price / price if price > 0.0 else None,
            warnings=warnings,
            paths=sum(sizes),
            standard_error=price_summary.standard_error,
            confidence_interval=(price - half_width, price + half_width),
        )


def get_pricing_model(
    method: Union[PricingMethod, str],
    *,
    binomial_steps: int = DEFAULT_BINOMIAL_STEPS,
    monte_carlo_paths: int = DEFAULT_MONTE_CARLO_PATHS,
    monte_carlo_seed: Optional[int] = None,
    monte_carlo_workers: int = 1,
) -> PricingModel:
    """Build the model for ``method``; unknown names are a validation error."""

    try:
        family = PricingMethod(method)
    except ValueError as exc:
        raise ValidationError(f"Unsupported pricing model '{method}'") from exc

    if family is PricingMethod.BLACK_SCHOLES:
        return BlackScholesModel()
    if family is PricingMethod.BINOMIAL:
        return BinomialModel(steps=binomial_steps)
    return MonteCarloModel(
        paths=monte_carlo_paths,
        seed=monte_carlo_seed,
        workers=monte_carlo_workers,
    )


def price_and_greeks(option: OptionTerms, inputs: PricingInputs, model: PricingModel) -> PricingResult:
    """Price ``option`` under ``model`` and stamp the wall-clock compute time."""

    start = time.perf_counter()
    result = model.price_and_greeks(option, inputs)
    result.computation_time_ms = (time.perf_counter() - start) * 1000.0
    if result.warnings:
        LOGGER.debug("Pricing warnings from %s: %s", result.model_used, result.warnings)
    return result
