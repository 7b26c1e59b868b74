"""Tests for the threaded pricing engine."""

from __future__ import annotations

import threading

import pytest

from derivatives_analytics.core.errors import DependencyError, EngineSaturatedError, ValidationError
from derivatives_analytics.core.models import OptionTerms, OptionType, PricingInputs
from derivatives_analytics.core.pricing_engine import PricingEngine, PricingJob
from derivatives_analytics.core.pricing_models import BinomialModel, BlackScholesModel, MonteCarloModel

INPUTS = PricingInputs(underlying_price=100.0, volatility=0.2, risk_free_rate=0.05, time_to_expiry=1.0)


def _terms(strike: float) -> OptionTerms:
    return OptionTerms(OptionType.CALL, strike)


def test_price_caches_results_and_returns_copies() -> None:
    with PricingEngine(num_threads=2, cache_ttl_seconds=60.0) as engine:
        first = engine.price(_terms(100.0), INPUTS, BlackScholesModel(), cache_key_prefix="t:OPT")
        first.warnings.append("mutated")
        second = engine.price(_terms(100.0), INPUTS, BlackScholesModel(), cache_key_prefix="t:OPT")

        assert engine.cache_size == 1
        assert second.price == pytest.approx(first.price)
        assert "mutated" not in second.warnings

        engine.clear_cache()
        assert engine.cache_size == 0


def test_cache_key_distinguishes_model_configuration() -> None:
    key_a = PricingEngine.make_cache_key("p", _terms(100.0), INPUTS, MonteCarloModel(paths=1000, seed=1))
    key_b = PricingEngine.make_cache_key("p", _terms(100.0), INPUTS, MonteCarloModel(paths=1000, seed=2))
    key_c = PricingEngine.make_cache_key("q", _terms(100.0), INPUTS, MonteCarloModel(paths=1000, seed=1))
    assert len({key_a, key_b, key_c}) == 3


def test_price_many_preserves_submission_order() -> None:
    strikes = [80.0, 90.0, 100.0, 110.0, 120.0]
    with PricingEngine(num_threads=3) as engine:
        jobs = [PricingJob(_terms(strike), INPUTS, BinomialModel(steps=50)) for strike in strikes]
        results = engine.price_many(jobs)

    prices = [result.price for result in results]
    assert prices == sorted(prices, reverse=True)
    assert all(result.model_used == "binomial_50" for result in results)


def test_price_many_with_no_jobs_returns_empty_list() -> None:
    with PricingEngine(num_threads=1) as engine:
        assert engine.price_many([]) == []


def test_shutdown_engine_rejects_work() -> None:
    engine = PricingEngine(num_threads=1)
    engine.shutdown()
    with pytest.raises(DependencyError):
        engine.price(_terms(100.0), INPUTS, BlackScholesModel())


def test_saturated_engine_raises() -> None:
    release = threading.Event()
    engine = PricingEngine(num_threads=1, queue_size=0, queue_timeout_seconds=0.0)
    try:
        blocker = engine._submit_task(release.wait, 5.0)
        with pytest.raises(EngineSaturatedError):
            engine.price(_terms(100.0), INPUTS, BlackScholesModel())
        release.set()
        blocker.result(timeout=5.0)
    finally:
        release.set()
        engine.shutdown()


def test_map_propagates_validation_errors_and_wraps_others() -> None:
    def reject(_: int) -> int:
        raise ValidationError("bad input")

    def explode(_: int) -> int:
        raise KeyError("boom")

    with PricingEngine(num_threads=2) as engine:
        assert engine.map(lambda value: value * 2, [1, 2, 3]) == [2, 4, 6]
        with pytest.raises(ValidationError):
            engine.map(reject, [1, 2])
        with pytest.raises(DependencyError, match="Engine task failed"):
            engine.map(explode, [1])
