"""Service configuration read from ``DAE_``-prefixed environment variables.

Every value is validated once, when :func:`get_settings` first runs; an
invalid value raises ``RuntimeError`` naming the offending variable so the
process fails at start-up rather than on the first request.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Optional, Tuple, TypeVar

from ..core.pricing_models import DEFAULT_BINOMIAL_STEPS, DEFAULT_MONTE_CARLO_PATHS

N = TypeVar("N", int, float)

ENV_PREFIX = "DAE_"
_ENVIRONMENT_ALIASES = {"prod": "production", "dev": "development"}
_TRUTHY = frozenset({"1", "true", "t", "yes", "y", "on"})
_DEV_ORIGINS = ("http://localhost", "http://localhost:3000", "http://localhost:8000")


def _raw(key: str) -> Optional[str]:
    """Trimmed value of ``DAE_<key>``; blank counts as unset."""

    value = os.getenv(ENV_PREFIX + key)
    if value is None or not value.strip():
        return None
    return value.strip()


def _number(
    key: str,
    convert: Callable[[str], N],
    default: N,
    *,
    minimum: Optional[N] = None,
    maximum: Optional[N] = None,
) -> N:
    raw = _raw(key)
    if raw is None:
        return default
    name = ENV_PREFIX + key
    try:
        value = convert(raw)
    except ValueError as exc:
        kind = "an integer" if convert is int else "a number"
        raise RuntimeError(f"Environment variable {name} must be {kind}") from exc
    if minimum is not None and value < minimum:
        raise RuntimeError(f"Environment variable {name} must be >= {minimum}")
    if maximum is not None and value > maximum:
        raise RuntimeError(f"Environment variable {name} must be <= {maximum}")
    return value


def _flag(key: str, default: bool) -> bool:
    raw = _raw(key)
    return default if raw is None else raw.lower() in _TRUTHY


def _names(key: str) -> Tuple[str, ...]:
    raw = _raw(key) or ""
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True, slots=True)
class Settings:
    """Immutable view over application configuration."""

    environment: str
    allowed_hosts: Tuple[str, ...]
    allowed_origins: Tuple[str, ...]
    cors_allow_credentials: bool
    threadpool_workers: int
    threadpool_queue_size: int
    threadpool_queue_timeout_seconds: float
    threadpool_task_timeout_seconds: float
    cache_size: int
    cache_ttl_seconds: float
    binomial_steps: int
    monte_carlo_paths: int
    monte_carlo_seed: int | None
    default_risk_free_rate: float
    default_dividend_yield: float
    greeks_max_age_seconds: float
    iv_history_window_days: int
    max_strategy_legs: int
    max_margin_positions: int
    rate_limit_default: str
    max_body_bytes: int
    max_margin_body_bytes: int

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from the current process environment."""

    environment = (_raw("ENVIRONMENT") or "development").lower()
    environment = _ENVIRONMENT_ALIASES.get(environment, environment)
    production = environment == "production"

    allowed_hosts = _names("ALLOWED_HOSTS")
    if not allowed_hosts:
        if production:
            raise RuntimeError("DAE_ALLOWED_HOSTS must be provided when DAE_ENVIRONMENT=production")
        allowed_hosts = ("localhost", "127.0.0.1")
    allowed_origins = _names("ALLOWED_ORIGINS") or (() if production else _DEV_ORIGINS)

    seed_raw = _raw("MONTE_CARLO_SEED")
    monte_carlo_seed = None if seed_raw is None else _number("MONTE_CARLO_SEED", int, 0)

    max_body_bytes = _number("MAX_BODY_BYTES", int, 1_048_576, minimum=1_024)

    return Settings(
        environment=environment,
        allowed_hosts=allowed_hosts,
        allowed_origins=allowed_origins,
        cors_allow_credentials=_flag("CORS_ALLOW_CREDENTIALS", True),
        threadpool_workers=_number("THREADS", int, 8, minimum=1),
        threadpool_queue_size=_number("THREAD_QUEUE_MAX", int, 32, minimum=0),
        threadpool_queue_timeout_seconds=_number("THREAD_QUEUE_TIMEOUT_SECONDS", float, 0.5, minimum=0.0),
        threadpool_task_timeout_seconds=_number("THREAD_TASK_TIMEOUT_SECONDS", float, 30.0, minimum=0.0),
        cache_size=_number("CACHE_SIZE", int, 10_000, minimum=1),
        cache_ttl_seconds=_number("CACHE_TTL_SECONDS", float, 5.0, minimum=0.0),
        binomial_steps=_number("BINOMIAL_STEPS", int, DEFAULT_BINOMIAL_STEPS, minimum=1, maximum=5_000),
        monte_carlo_paths=_number("MONTE_CARLO_PATHS", int, DEFAULT_MONTE_CARLO_PATHS, minimum=2, maximum=2_000_000),
        monte_carlo_seed=monte_carlo_seed,
        default_risk_free_rate=_number("DEFAULT_RISK_FREE_RATE", float, 0.05, minimum=-1.0, maximum=1.0),
        default_dividend_yield=_number("DEFAULT_DIVIDEND_YIELD", float, 0.0, minimum=0.0, maximum=1.0),
        greeks_max_age_seconds=_number("GREEKS_MAX_AGE_SECONDS", float, 300.0, minimum=0.0),
        iv_history_window_days=_number("IV_HISTORY_WINDOW_DAYS", int, 252, minimum=1),
        max_strategy_legs=_number("MAX_STRATEGY_LEGS", int, 8, minimum=1),
        max_margin_positions=_number("MAX_MARGIN_POSITIONS", int, 1_000, minimum=1),
        rate_limit_default=_raw("RATE_LIMIT_DEFAULT") or "60/minute",
        max_body_bytes=max_body_bytes,
        max_margin_body_bytes=_number("MAX_MARGIN_BODY_BYTES", int, 4 * max_body_bytes, minimum=1_024),
    )
