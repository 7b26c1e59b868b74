"""Threaded pricing engine with bounded admission and a TTL result cache."""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError, as_completed
from dataclasses import dataclass
from typing import Callable, Hashable, Iterable, List, Optional, Tuple, TypeVar

from ..observability.metrics import (
    CACHE_HITS,
    CACHE_MISSES,
    MODEL_ERRORS,
    MODEL_LATENCY,
    THREADPOOL_IN_FLIGHT,
    THREADPOOL_QUEUE_DEPTH,
    THREADPOOL_QUEUE_WAIT,
    THREADPOOL_REJECTIONS,
    THREADPOOL_WORKERS,
)
from .errors import DependencyError, DerivativesError, EngineSaturatedError
from .models import OptionTerms, PricingInputs, PricingResult
from .pricing_models import PricingModel, price_and_greeks

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

CacheKey = Tuple[Hashable, ...]


class PricingCache:
    """LRU of pricing results, each valid for ``ttl_seconds`` after insertion.

    Results are copied on the way in and out so callers may mutate what they
    receive. A ``ttl_seconds`` of zero keeps entries until evicted by size.
    """

    def __init__(self, max_entries: int = 10_000, ttl_seconds: float = 5.0) -> None:
        self.max_entries = max(1, max_entries)
        self.ttl_seconds = max(0.0, ttl_seconds)
        self._lock = threading.Lock()
        self._results: "OrderedDict[CacheKey, Tuple[float, PricingResult]]" = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    @staticmethod
    def _copy(result: PricingResult) -> PricingResult:
        return dataclasses.replace(result, warnings=list(result.warnings))

    def lookup(self, key: CacheKey) -> Optional[PricingResult]:
        now = time.monotonic()
        with self._lock:
            stored = self._results.get(key)
            if stored is None:
                return None
            stored_at, result = stored
            if self.ttl_seconds and now - stored_at > self.ttl_seconds:
                del self._results[key]
                return None
            self._results.move_to_end(key)
            return self._copy(result)

    def store(self, key: CacheKey, result: PricingResult) -> None:
        with self._lock:
            self._results[key] = (time.monotonic(), self._copy(result))
            self._results.move_to_end(key)
            while len(self._results) > self.max_entries:
                self._results.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._results.clear()


class _Admission:
    """Counts outstanding tasks against ``workers + backlog`` slots."""

    def __init__(self, engine_name: str, workers: int, backlog: int, wait_seconds: float) -> None:
        self._engine_name = engine_name
        self._workers = workers
        self._wait_seconds = wait_seconds
        self._slots = threading.BoundedSemaphore(workers + backlog)
        self._lock = threading.Lock()
        self._outstanding = 0

    def enter(self) -> None:
        started = time.perf_counter()
        if self._wait_seconds == 0:
            admitted = self._slots.acquire(blocking=False)
        else:
            admitted = self._slots.acquire(timeout=self._wait_seconds)
        THREADPOOL_QUEUE_WAIT.labels(engine=self._engine_name).observe(time.perf_counter() - started)
        if not admitted:
            THREADPOOL_REJECTIONS.labels(engine=self._engine_name).inc()
            raise EngineSaturatedError(f"Pricing engine {self._engine_name} is saturated")
        self._adjust(1)

    def leave(self, _: Optional[Future] = None) -> None:
        self._slots.release()
        self._adjust(-1)

    def _adjust(self, delta: int) -> None:
        with self._lock:
            self._outstanding = max(0, self._outstanding + delta)
            running = min(self._outstanding, self._workers)
            THREADPOOL_IN_FLIGHT.labels(engine=self._engine_name).set(running)
            THREADPOOL_QUEUE_DEPTH.labels(engine=self._engine_name).set(self._outstanding - running)


@dataclass(frozen=True, slots=True)
class PricingJob:
    option: OptionTerms
    inputs: PricingInputs
    model: PricingModel
    cache_key_prefix: str = ""


class PricingEngine:
    """Runs pricing work across a bounded pool of workers.

    At most ``num_threads + queue_size`` tasks may be outstanding; a caller
    that cannot be admitted within ``queue_timeout_seconds`` gets an
    :class:`EngineSaturatedError`. Results are cached per instrument, input
    fingerprint and model configuration for ``cache_ttl_seconds``.
    """

    def __init__(
        self,
        *,
        num_threads: int = 8,
        cache_size: int = 10_000,
        cache_ttl_seconds: float = 5.0,
        queue_size: int = 32,
        queue_timeout_seconds: float = 0.5,
        task_timeout_seconds: float = 30.0,
        name: str = "default",
    ) -> None:
        self.name = name
        self.num_threads = max(1, num_threads)
        self.task_timeout_seconds = max(0.0, task_timeout_seconds)
        self._cache = PricingCache(cache_size, cache_ttl_seconds)
        self._admission = _Admission(
            name, self.num_threads, max(0, queue_size), max(0.0, queue_timeout_seconds)
        )
        self._pool_lock = threading.Lock()
        self._pool: Optional[ThreadPoolExecutor] = ThreadPoolExecutor(
            max_workers=self.num_threads,
            thread_name_prefix=f"pricing-{name}",
        )
        THREADPOOL_WORKERS.labels(engine=name).set(self.num_threads)

    def __enter__(self) -> "PricingEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def shutdown(self, wait: bool = True) -> None:
        with self._pool_lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=wait, cancel_futures=True)
            LOGGER.info("Pricing engine %s shut down", self.name)

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def _result_timeout(self) -> Optional[float]:
        return self.task_timeout_seconds or None

    def _submit_task(self, fn: Callable[..., R], *args) -> "Future[R]":
        with self._pool_lock:
            pool = self._pool
        if pool is None:
            raise DependencyError(f"Pricing engine {self.name} has been shut down")

        self._admission.enter()
        try:
            future = pool.submit(fn, *args)
        except RuntimeError as exc:
            self._admission.leave()
            raise DependencyError(f"Pricing engine {self.name} has been shut down") from exc
        future.add_done_callback(self._admission.leave)
        return future

    @staticmethod
    def make_cache_key(
        prefix: str,
        option: OptionTerms,
        inputs: PricingInputs,
        model: PricingModel,
    ) -> CacheKey:
        return (
            prefix,
            option.option_type.value,
            option.exercise_style.value,
            round(option.strike_price, 6),
            round(inputs.underlying_price, 6),
            round(inputs.volatility, 6),
            round(inputs.risk_free_rate, 6),
            round(inputs.dividend_yield, 6),
            round(inputs.time_to_expiry, 8),
            repr(model),
        )

    def _run_pricing(self, job: PricingJob) -> PricingResult:
        key = self.make_cache_key(job.cache_key_prefix, job.option, job.inputs, job.model)
        cached = self._cache.lookup(key)
        if cached is not None:
            CACHE_HITS.labels(engine=self.name).inc()
            return cached
        CACHE_MISSES.labels(engine=self.name).inc()

        family = job.model.method.value
        started = time.perf_counter()
        try:
            result = price_and_greeks(job.option, job.inputs, job.model)
        except Exception:
            MODEL_ERRORS.labels(model=family).inc()
            raise
        MODEL_LATENCY.labels(model=family).observe(time.perf_counter() - started)
        self._cache.store(key, result)
        return result

    def price(
        self,
        option: OptionTerms,
        inputs: PricingInputs,
        model: PricingModel,
        cache_key_prefix: str = "",
    ) -> PricingResult:
        future = self._submit_task(self._run_pricing, PricingJob(option, inputs, model, cache_key_prefix))
        try:
            return future.result(timeout=self._result_timeout)
        except TimeoutError as exc:
            future.cancel()
            raise DependencyError(f"Pricing on engine {self.name} timed out") from exc

    def price_many(self, jobs: Iterable[PricingJob]) -> List[PricingResult]:
        """Price ``jobs`` concurrently, returning results in submission order."""

        return self.map(self._run_pricing, jobs)

    def map(self, fn: Callable[[T], R], items: Iterable[T]) -> List[R]:
        """Apply ``fn`` to every item on the pool.

        Results keep the order of ``items``. The first failure cancels the
        remaining work; analytics and validation errors propagate unchanged and
        anything else is raised as a :class:`DependencyError`.
        """

        pending: List["Future[R]"] = []
        try:
            for item in items:
                pending.append(self._submit_task(fn, item))
            for future in as_completed(pending, timeout=self._result_timeout):
                future.result()
            return [future.result() for future in pending]
        except TimeoutError as exc:
            raise DependencyError(f"Pricing on engine {self.name} timed out") from exc
        except (DerivativesError, ValueError):
            raise
        except Exception as exc:
            LOGGER.exception("Engine %s task failed", self.name)
            raise DependencyError(f"Engine task failed: {exc}") from exc
        finally:
            for future in pending:
                future.cancel()
