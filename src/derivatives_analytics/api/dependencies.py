"""Shared dependencies for FastAPI routes."""

from __future__ import annotations

import atexit
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Header

from ..core.collaborators import InMemoryEventPublisher, InMemoryMarketDataStore, InMemoryResultSink
from ..core.operations import OperationDefaults
from ..core.pricing_engine import PricingEngine
from .config import get_settings


@dataclass(frozen=True, slots=True)
class RequestContext:
    tenant_id: str
    user_id: Optional[str] = None


def get_request_context(
    tenant_id: str = Header(..., alias="X-Tenant-ID", min_length=1, max_length=64),
    user_id: Optional[str] = Header(None, alias="X-User-ID", max_length=128),
) -> RequestContext:
    """Resolve the calling tenant and user from request headers."""

    return RequestContext(tenant_id=tenant_id, user_id=user_id)


@lru_cache(maxsize=1)
def get_engine() -> PricingEngine:
    """Return a shared pricing engine instance."""

    settings = get_settings()
    engine = PricingEngine(
        num_threads=settings.threadpool_workers,
        cache_size=settings.cache_size,
        cache_ttl_seconds=settings.cache_ttl_seconds,
        queue_size=settings.threadpool_queue_size,
        queue_timeout_seconds=settings.threadpool_queue_timeout_seconds,
        task_timeout_seconds=settings.threadpool_task_timeout_seconds,
    )
    atexit.register(engine.shutdown, wait=False)
    return engine


@lru_cache(maxsize=1)
def get_operation_defaults() -> OperationDefaults:
    settings = get_settings()
    return OperationDefaults(
        risk_free_rate=settings.default_risk_free_rate,
        dividend_yield=settings.default_dividend_yield,
        binomial_steps=settings.binomial_steps,
        monte_carlo_paths=settings.monte_carlo_paths,
        monte_carlo_seed=settings.monte_carlo_seed,
        iv_history_window_days=settings.iv_history_window_days,
    )


# The in-memory collaborators back development deployments; production
# wiring overrides these dependencies with real market data and storage.
@lru_cache(maxsize=1)
def get_market_data_store() -> InMemoryMarketDataStore:
    return InMemoryMarketDataStore()


@lru_cache(maxsize=1)
def get_result_sink() -> InMemoryResultSink:
    return InMemoryResultSink()


@lru_cache(maxsize=1)
def get_event_publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()
