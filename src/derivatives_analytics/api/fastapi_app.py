"""FastAPI application exposing the derivatives analytics operations."""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime
from typing import Dict, Optional

import psutil
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .. import __version__
from ..core.pricing_engine import PricingEngine
from ..observability.metrics import RATE_LIMIT_REJECTIONS
from .config import Settings, get_settings
from .dependencies import get_engine
from .middleware import (
    BodySizeLimitMiddleware,
    RequestObserver,
    SecurityHeadersMiddleware,
    request_id,
    route_template,
)
from .routes import greeks, risk, strategies, volatility

LOGGER = logging.getLogger(__name__)
START_TIME = time.time()
API_PREFIX = "/api/v1/derivatives"


async def _rate_limited(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    RATE_LIMIT_REJECTIONS.labels(route=route_template(request)).inc()
    return JSONResponse(
        status_code=429,
        content={"detail": f"Rate limit exceeded: {exc.detail}"},
        headers={"X-Request-ID": request_id(request)},
    )


async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
    LOGGER.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
        headers={"X-Request-ID": request_id(request)},
    )


def _install_middleware(app: FastAPI, settings: Settings) -> None:
    # Starlette runs the last middleware added first.
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=list(settings.allowed_hosts))
    app.add_middleware(SecurityHeadersMiddleware, no_store_prefix=API_PREFIX)
    app.add_middleware(
        BodySizeLimitMiddleware,
        max_body_bytes=settings.max_body_bytes,
        route_limits={f"{API_PREFIX}/margin": settings.max_margin_body_bytes},
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "X-Request-ID", "X-Tenant-ID", "X-User-ID"],
    )

    @app.middleware("http")
    async def observe_request(request: Request, call_next):
        observer = RequestObserver(request)
        try:
            response = await call_next(request)
        except Exception:
            observer.finish(500)
            raise
        response.headers.setdefault("X-Request-ID", observer.request_id)
        observer.finish(response.status_code)
        return response


def _system_load() -> Dict[str, Optional[float]]:
    try:
        return {
            "cpu_percent": psutil.cpu_percent(interval=None),
            "memory_percent": psutil.virtual_memory().percent,
        }
    except (psutil.Error, PermissionError):
        return {"cpu_percent": None, "memory_percent": None}


def _install_monitoring(app: FastAPI, limiter: Limiter, settings: Settings) -> None:
    @app.get("/metrics", tags=["monitoring"], include_in_schema=False)
    @limiter.exempt
    async def metrics() -> Response:
        """Prometheus exposition of request, engine and calculation metrics."""

        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz", tags=["monitoring"])
    @limiter.exempt
    async def healthz(engine: PricingEngine = Depends(get_engine)) -> Dict[str, object]:
        """Liveness, host load and the state of the shared pricing engine."""

        return {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat(),
            "version": app.version,
            "environment": settings.environment,
            "uptime_seconds": round(max(0.0, time.time() - START_TIME), 3),
            "system": _system_load(),
            "engine": {
                "name": engine.name,
                "workers": engine.num_threads,
                "cached_results": engine.cache_size,
            },
        }

    @app.get("/health", tags=["monitoring"], include_in_schema=False)
    @limiter.exempt
    async def health(engine: PricingEngine = Depends(get_engine)) -> Dict[str, object]:
        return await healthz(engine)


def create_app() -> FastAPI:
    settings = get_settings()
    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit_default])

    app = FastAPI(
        title="Derivatives Analytics Engine",
        version=__version__,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
    )
    app.state.settings = settings
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limited)
    app.add_exception_handler(Exception, _unhandled)

    _install_middleware(app, settings)
    for module in (greeks, volatility, strategies, risk):
        app.include_router(module.router, prefix=API_PREFIX)
    _install_monitoring(app, limiter, settings)
    return app


app = create_app()
