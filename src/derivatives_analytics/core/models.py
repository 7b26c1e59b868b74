"""Domain models for the derivatives analytics engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import List, Optional, Tuple

from ..utils.validation import validate_pricing_parameters
from .errors import ValidationError

SECONDS_PER_YEAR = 365.25 * 24 * 60 * 60


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC timestamp, treating naive values as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class DerivativeType(str, Enum):
    """Instrument families handled by the engine."""

    CALL_OPTION = "call_option"
    PUT_OPTION = "put_option"
    FUTURE = "future"
    FORWARD = "forward"
    SWAP = "swap"
    WARRANT = "warrant"
    OTHER = "other"


class InstrumentStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    EXERCISED = "exercised"
    ASSIGNED = "assigned"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class OptionType(str, Enum):
    """Supported option contract types."""

    CALL = "call"
    PUT = "put"


class ExerciseStyle(str, Enum):
    """Available exercise styles for an option contract."""

    EUROPEAN = "european"
    AMERICAN = "american"
    BERMUDAN = "bermudan"


class SettlementType(str, Enum):
    PHYSICAL = "physical"
    CASH = "cash"


class PricingMethod(str, Enum):
    """Pricing model families selectable per request."""

    BLACK_SCHOLES = "black_scholes"
    BINOMIAL = "binomial"
    MONTE_CARLO = "monte_carlo"


@dataclass(frozen=True, slots=True, kw_only=True)
class DerivativeInstrument:
    """Contract terms and the latest externally ingested market snapshot.

    The engine never mutates an instrument; market fields are owned by the
    market-data ingestion process.
    """

    tenant_id: str
    instrument_id: str
    underlying_symbol: str
    derivative_type: DerivativeType
    expiration_date: datetime
    currency: str = "USD"
    contract_size: float = 1.0
    tick_size: float = 0.01
    issue_date: Optional[datetime] = None
    last_trading_date: Optional[datetime] = None
    settlement_date: Optional[datetime] = None
    current_price: Optional[float] = None
    underlying_price: Optional[float] = None
    market_data_as_of: Optional[datetime] = None
    status: InstrumentStatus = InstrumentStatus.ACTIVE
    entry_price: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.instrument_id:
            raise ValidationError("instrument_id must be a non-empty string")
        if not self.underlying_symbol:
            raise ValidationError("underlying_symbol must be a non-empty string")
        if self.contract_size <= 0:
            raise ValidationError("contract_size must be strictly positive")
        if self.tick_size <= 0:
            raise ValidationError("tick_size must be strictly positive")

    @property
    def is_option(self) -> bool:
        return False

    def time_to_expiry(self, as_of: datetime) -> float:
        """Year fraction until expiration; zero or negative once expired."""

        delta = as_utc(self.expiration_date) - as_utc(as_of)
        return delta.total_seconds() / SECONDS_PER_YEAR

    def days_to_expiration(self, as_of: datetime) -> float:
        delta = as_utc(self.expiration_date) - as_utc(as_of)
        return delta.total_seconds() / timedelta(days=1).total_seconds()


@dataclass(frozen=True, slots=True, kw_only=True)
class OptionContract(DerivativeInstrument):
    """Immutable description of a listed option contract."""

    option_type: OptionType
    strike_price: float
    exercise_style: ExerciseStyle = ExerciseStyle.EUROPEAN
    settlement_type: SettlementType = SettlementType.PHYSICAL

    def __post_init__(self) -> None:
        DerivativeInstrument.__post_init__(self)
        if self.strike_price <= 0:
            raise ValidationError("strike_price must be strictly positive")

    @property
    def is_option(self) -> bool:
        return True

    @property
    def terms(self) -> "OptionTerms":
        return OptionTerms(self.option_type, self.strike_price, self.exercise_style)

    def intrinsic_value(self, underlying_price: float) -> float:
        return intrinsic_value(self.option_type, self.strike_price, underlying_price)


def intrinsic_value(option_type: OptionType, strike: float, underlying_price: float) -> float:
    """Return the exercise value of a vanilla option."""

    if option_type is OptionType.CALL:
        return max(0.0, underlying_price - strike)
    return max(0.0, strike - underlying_price)


@dataclass(frozen=True, slots=True)
class PricingInputs:
    """Market inputs for a single pricing call, validated on construction."""

    underlying_price: float
    volatility: float
    risk_free_rate: float = 0.0
    dividend_yield: float = 0.0
    time_to_expiry: float = 0.0

    def __post_init__(self) -> None:
        validate_pricing_parameters(
            self.underlying_price,
            self.volatility,
            self.risk_free_rate,
            self.dividend_yield,
            self.time_to_expiry,
        )


@dataclass(slots=True)
class PricingResult:
    """Container for the outcome of a pricing model evaluation.

    ``theta`` is per calendar day; ``vega`` and ``rho`` are per one percentage
    point move in volatility and rate.
    """

    price: float
    delta: float
    gamma: float
    theta: float
    vega: float
    rho: float
    model_used: str
    lambda_: Optional[float] = None
    vanna: Optional[float] = None
    charm: Optional[float] = None
    color: Optional[float] = None
    volga: Optional[float] = None
    computation_time_ms: float = 0.0
    warnings: List[str] = field(default_factory=list)
    steps: Optional[int] = None
    paths: Optional[int] = None
    standard_error: Optional[float] = None
    confidence_interval: Optional[Tuple[float, float]] = None


@dataclass(frozen=True, slots=True)
class GreeksCalculation:
    """Value snapshot of one Greeks computation and the exact inputs behind it."""

    calculation_id: str
    tenant_id: str
    instrument_id: str
    calculated_at: datetime
    price: float
    delta: float
    gamma: float
    theta: float
    vega: float
    rho: float
    delta_cash: float
    gamma_cash: float
    theta_daily: float
    vega_percent: float
    rho_percent: float
    underlying_price: float
    volatility: float
    risk_free_rate: float
    dividend_yield: float
    time_to_expiry: float
    model_used: str
    computation_time_ms: float
    lambda_: Optional[float] = None
    vanna: Optional[float] = None
    charm: Optional[float] = None
    color: Optional[float] = None
    volga: Optional[float] = None
    steps: Optional[int] = None
    paths: Optional[int] = None
    standard_error: Optional[float] = None
    warnings: Tuple[str, ...] = ()

    def age(self, now: Optional[datetime] = None) -> timedelta:
        current = as_utc(now) if now is not None else datetime.now(UTC)
        return current - as_utc(self.calculated_at)

    def is_fresh(self, max_age: timedelta, now: Optional[datetime] = None) -> bool:
        return self.age(now) <= max_age


@dataclass(frozen=True, slots=True)
class ImpliedVolatilityAnalysis:
    """Solved implied volatility with its trailing-history context.

    The 95% band is a statistical description of the history window and does
    not necessarily contain ``implied_volatility``.
    """

    analysis_id: str
    tenant_id: str
    instrument_id: str
    analysis_date: datetime
    implied_volatility: float
    market_price: float
    model_used: str
    iterations: int
    converged: bool
    underlying_price: float
    risk_free_rate: float
    dividend_yield: float
    time_to_expiry: float
    historical_volatility: Optional[float] = None
    iv_rank: Optional[float] = None
    iv_percentile: Optional[float] = None
    iv_standard_deviation: Optional[float] = None
    confidence_95_lower: Optional[float] = None
    confidence_95_upper: Optional[float] = None
    data_points: int = 0
    calculation_method: str = "newton_raphson"
    warnings: Tuple[str, ...] = ()
    underlying_symbol: Optional[str] = None
    option_type: Optional[OptionType] = None
    strike_price: Optional[float] = None
    expiration_date: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class OptionTerms:
    """The subset of an option's terms a pricing model needs."""

    option_type: OptionType
    strike_price: float
    exercise_style: ExerciseStyle = ExerciseStyle.EUROPEAN

    def __post_init__(self) -> None:
        if self.strike_price <= 0:
            raise ValidationError("strike_price must be strictly positive")

    def intrinsic_value(self, underlying_price: float) -> float:
        return intrinsic_value(self.option_type, self.strike_price, underlying_price)
