"""Test configuration and shared market fixtures."""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from typing import Callable, Iterator

import pytest

os.environ.setdefault("DAE_ALLOWED_HOSTS", "testserver,localhost,127.0.0.1")
os.environ.setdefault("DAE_ALLOWED_ORIGINS", "http://testserver")
os.environ.setdefault("DAE_THREADS", "2")
os.environ.setdefault("DAE_THREAD_QUEUE_MAX", "8")
os.environ.setdefault("DAE_THREAD_QUEUE_TIMEOUT_SECONDS", "0.5")
os.environ.setdefault("DAE_RATE_LIMIT_DEFAULT", "1000/minute")
os.environ.setdefault("DAE_BINOMIAL_STEPS", "100")
os.environ.setdefault("DAE_MONTE_CARLO_PATHS", "4000")
os.environ.setdefault("DAE_MONTE_CARLO_SEED", "11")

from derivatives_analytics.api.config import get_settings  # noqa: E402
from derivatives_analytics.core.collaborators import (  # noqa: E402
    InMemoryEventPublisher,
    InMemoryMarketDataStore,
    InMemoryResultSink,
)
from derivatives_analytics.core.models import (  # noqa: E402
    DerivativeInstrument,
    DerivativeType,
    OptionContract,
    OptionType,
)
from derivatives_analytics.core.pricing_engine import PricingEngine  # noqa: E402

TENANT = "tenant-a"
SYMBOL = "AAPL"
NOW = datetime.now(UTC).replace(microsecond=0)


def make_option(
    instrument_id: str = "AAPL-C-100",
    *,
    option_type: OptionType = OptionType.CALL,
    strike: float = 100.0,
    days: float = 90.0,
    tenant_id: str = TENANT,
    as_of: datetime = NOW,
    **overrides,
) -> OptionContract:
    return OptionContract(
        tenant_id=tenant_id,
        instrument_id=instrument_id,
        underlying_symbol=overrides.pop("underlying_symbol", SYMBOL),
        derivative_type=(
            DerivativeType.CALL_OPTION if option_type is OptionType.CALL else DerivativeType.PUT_OPTION
        ),
        expiration_date=as_of + timedelta(days=days),
        option_type=option_type,
        strike_price=strike,
        **overrides,
    )


@pytest.fixture(autouse=True)
def _reset_settings() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def option_factory() -> Callable[..., OptionContract]:
    return make_option


@pytest.fixture()
def now() -> datetime:
    """The instant the store fixture's expirations are measured from."""

    return NOW


@pytest.fixture()
def store() -> InMemoryMarketDataStore:
    """A store holding AAPL market data, two listed options and a future."""

    market = InMemoryMarketDataStore()
    market.set_underlying_price(SYMBOL, 100.0)
    market.set_implied_volatility(SYMBOL, 0.25)
    market.set_risk_free_rate("USD", 0.05)
    market.set_historical_volatility(SYMBOL, 0.22)
    market.add_instrument(make_option("AAPL-C-100", current_price=5.9, entry_price=5.0))
    market.add_instrument(make_option("AAPL-P-95", option_type=OptionType.PUT, strike=95.0, days=20))
    market.add_instrument(
        DerivativeInstrument(
            tenant_id=TENANT,
            instrument_id="AAPL-F-1",
            underlying_symbol=SYMBOL,
            derivative_type=DerivativeType.FUTURE,
            expiration_date=NOW + timedelta(days=45),
            contract_size=10.0,
            current_price=101.0,
        )
    )
    return market


@pytest.fixture()
def sink() -> InMemoryResultSink:
    return InMemoryResultSink()


@pytest.fixture()
def publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture()
def engine() -> Iterator[PricingEngine]:
    with PricingEngine(num_threads=2, cache_size=64, cache_ttl_seconds=60.0, name="test") as pricing_engine:
        yield pricing_engine
