"""Market data, result persistence and event publication seams.

Production deployments plug their own storage and event bus behind these
protocols. The in-memory implementations are meant for development and the
test suite; they are thread-safe but keep everything in process memory.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from datetime import UTC, datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple, runtime_checkable

from .errors import DependencyError
from .mark_to_market import MarkToMarketValuation
from .models import DerivativeInstrument, GreeksCalculation, ImpliedVolatilityAnalysis, as_utc
from .portfolio import DerivativePosition
from .strategies import OptionStrategy

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class MarketDataStore(Protocol):
    def get_instrument(self, instrument_id: str, tenant_id: str) -> Optional[DerivativeInstrument]: ...

    def get_underlying_price(self, symbol: str) -> float: ...

    def get_implied_volatility(self, symbol: str) -> float: ...

    def get_risk_free_rate(self, currency: str) -> Optional[float]: ...

    def get_historical_iv(self, instrument_id: str, window_days: int) -> Sequence[float]: ...

    def get_historical_volatility(self, symbol: str, window_days: int) -> Optional[float]: ...

    def get_portfolio_positions(self, portfolio_id: str, tenant_id: str) -> Sequence[DerivativePosition]: ...

    def get_available_margin(self, portfolio_id: str, tenant_id: str) -> Optional[float]: ...


@runtime_checkable
class ResultSink(Protocol):
    def save(self, record: Any) -> None: ...

    def greeks_history(
        self,
        instrument_id: str,
        tenant_id: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[GreeksCalculation]: ...

    def get_previous_valuation(self, instrument_id: str, tenant_id: str) -> Optional[MarkToMarketValuation]: ...

    def get_active_strategies(self, portfolio_id: str, tenant_id: str) -> List[OptionStrategy]: ...

    def get_strategy(self, strategy_id: str, tenant_id: str) -> Optional[OptionStrategy]: ...

    def implied_volatility_analyses(self, underlying_symbol: str, tenant_id: str) -> List[ImpliedVolatilityAnalysis]: ...


@runtime_checkable
class EventPublisher(Protocol):
    def publish(self, event_name: str, payload: Mapping[str, Any]) -> None: ...


class InMemoryMarketDataStore:
    """Dictionary-backed market data; lookups of unknown market data raise :class:`DependencyError`."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._instruments: Dict[Tuple[str, str], DerivativeInstrument] = {}
        self._underlying_prices: Dict[str, float] = {}
        self._implied_volatilities: Dict[str, float] = {}
        self._rates: Dict[str, float] = {}
        self._historical_iv: Dict[str, List[Tuple[datetime, float]]] = defaultdict(list)
        self._historical_volatility: Dict[str, float] = {}
        self._positions: Dict[Tuple[str, str], List[DerivativePosition]] = defaultdict(list)
        self._available_margin: Dict[Tuple[str, str], float] = {}

    def add_instrument(self, instrument: DerivativeInstrument) -> None:
        with self._lock:
            self._instruments[(instrument.tenant_id, instrument.instrument_id)] = instrument

    def set_underlying_price(self, symbol: str, price: float) -> None:
        with self._lock:
            self._underlying_prices[symbol] = price

    def set_implied_volatility(self, symbol: str, volatility: float) -> None:
        with self._lock:
            self._implied_volatilities[symbol] = volatility

    def set_risk_free_rate(self, currency: str, rate: float) -> None:
        with self._lock:
            self._rates[currency] = rate

    def add_historical_iv(self, instrument_id: str, observations: Iterable[Tuple[datetime, float]]) -> None:
        with self._lock:
            self._historical_iv[instrument_id].extend((as_utc(when), value) for when, value in observations)

    def set_historical_volatility(self, symbol: str, volatility: float) -> None:
        with self._lock:
            self._historical_volatility[symbol] = volatility

    def add_position(self, tenant_id: str, position: DerivativePosition) -> None:
        with self._lock:
            self._positions[(tenant_id, position.portfolio_id)].append(position)

    def set_available_margin(self, tenant_id: str, portfolio_id: str, amount: float) -> None:
        with self._lock:
            self._available_margin[(tenant_id, portfolio_id)] = amount

    def get_instrument(self, instrument_id: str, tenant_id: str) -> Optional[DerivativeInstrument]:
        with self._lock:
            return self._instruments.get((tenant_id, instrument_id))

    def get_underlying_price(self, symbol: str) -> float:
        with self._lock:
            price = self._underlying_prices.get(symbol)
        if price is None:
            raise DependencyError(f"No underlying price available for {symbol}")
        return price

    def get_implied_volatility(self, symbol: str) -> float:
        with self._lock:
            volatility = self._implied_volatilities.get(symbol)
        if volatility is None:
            raise DependencyError(f"No implied volatility available for {symbol}")
        return volatility

    def get_risk_free_rate(self, currency: str) -> Optional[float]:
        with self._lock:
            return self._rates.get(currency)

    def get_historical_iv(self, instrument_id: str, window_days: int) -> List[float]:
        cutoff = datetime.now(UTC) - timedelta(days=window_days)
        with self._lock:
            observations = list(self._historical_iv.get(instrument_id, ()))
        return [value for when, value in sorted(observations) if when >= cutoff]

    def get_historical_volatility(self, symbol: str, window_days: int) -> Optional[float]:
        with self._lock:
            return self._historical_volatility.get(symbol)

    def get_portfolio_positions(self, portfolio_id: str, tenant_id: str) -> List[DerivativePosition]:
        with self._lock:
            return list(self._positions.get((tenant_id, portfolio_id), ()))

    def get_available_margin(self, portfolio_id: str, tenant_id: str) -> Optional[float]:
        with self._lock:
            return self._available_margin.get((tenant_id, portfolio_id))


class InMemoryResultSink:
    """Append-only record store grouped by record type."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: Dict[type, List[Any]] = defaultdict(list)

    def save(self, record: Any) -> None:
        with self._lock:
            self._records[type(record)].append(record)

    def records(self, record_type: type) -> List[Any]:
        with self._lock:
            return list(self._records.get(record_type, ()))

    def greeks_history(
        self,
        instrument_id: str,
        tenant_id: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[GreeksCalculation]:
        """Newest first."""

        history = [
            record
            for record in self.records(GreeksCalculation)
            if record.instrument_id == instrument_id and record.tenant_id == tenant_id
        ]
        if since is not None:
            cutoff = as_utc(since)
            history = [record for record in history if as_utc(record.calculated_at) >= cutoff]
        history.sort(key=lambda record: as_utc(record.calculated_at), reverse=True)
        return history[:limit] if limit is not None else history

    def get_previous_valuation(self, instrument_id: str, tenant_id: str) -> Optional[MarkToMarketValuation]:
        chain = [
            record
            for record in self.records(MarkToMarketValuation)
            if record.instrument_id == instrument_id and record.tenant_id == tenant_id
        ]
        if not chain:
            return None
        return max(chain, key=lambda record: as_utc(record.valuation_date))

    def get_active_strategies(self, portfolio_id: str, tenant_id: str) -> List[OptionStrategy]:
        return [
            record
            for record in self.records(OptionStrategy)
            if record.portfolio_id == portfolio_id and record.tenant_id == tenant_id
        ]

    def get_strategy(self, strategy_id: str, tenant_id: str) -> Optional[OptionStrategy]:
        for record in self.records(OptionStrategy):
            if record.strategy_id == strategy_id and record.tenant_id == tenant_id:
                return record
        return None

    def implied_volatility_analyses(self, underlying_symbol: str, tenant_id: str) -> List[ImpliedVolatilityAnalysis]:
        return [
            record
            for record in self.records(ImpliedVolatilityAnalysis)
            if record.underlying_symbol == underlying_symbol and record.tenant_id == tenant_id
        ]


class InMemoryEventPublisher:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def publish(self, event_name: str, payload: Mapping[str, Any]) -> None:
        with self._lock:
            self.events.append((event_name, dict(payload)))
        LOGGER.debug("Published %s", event_name)

    def names(self) -> List[str]:
        with self._lock:
            return [name for name, _ in self.events]
