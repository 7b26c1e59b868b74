"""HTTP middleware and per-request observability for the analytics API."""

from __future__ import annotations

import json
import logging
import time
from typing import Awaitable, Callable, Dict, Mapping, Optional, Tuple
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.status import HTTP_413_REQUEST_ENTITY_TOO_LARGE

from ..observability.metrics import PAYLOAD_TOO_LARGE, REQUEST_COUNT, REQUEST_ERRORS, REQUEST_LATENCY

REQUEST_LOGGER = logging.getLogger("derivatives_analytics.request")

CallNext = Callable[[Request], Awaitable[Response]]

DEFAULT_SECURITY_HEADERS: Mapping[str, str] = {
    "Strict-Transport-Security": "max-age=63072000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def request_id(request: Request) -> str:
    """Request id from ``X-Request-ID``, generated once per request when absent."""

    current = getattr(request.state, "request_id", None)
    if not current:
        current = request.headers.get("x-request-id") or uuid4().hex
        request.state.request_id = current
    return current


def route_template(request: Request) -> str:
    """Matched route path (``/greeks/{instrument_id}/latest``) rather than the raw URL."""

    return getattr(request.scope.get("route"), "path", request.url.path)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers; analytics results under ``no_store_prefix`` are marked uncacheable."""

    def __init__(
        self,
        app,
        *,
        headers: Optional[Mapping[str, str]] = None,
        no_store_prefix: Optional[str] = None,
    ) -> None:
        super().__init__(app)
        self._headers = dict(DEFAULT_SECURITY_HEADERS if headers is None else headers)
        self._no_store_prefix = no_store_prefix

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        response = await call_next(request)
        for name, value in self._headers.items():
            response.headers.setdefault(name, value)
        if self._no_store_prefix and request.url.path.startswith(self._no_store_prefix):
            response.headers.setdefault("Cache-Control", "no-store")
        return response


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject request bodies above a byte limit with ``413``.

    ``route_limits`` maps path prefixes to their own limit; the longest
    matching prefix wins, otherwise ``max_body_bytes`` applies.
    """

    def __init__(
        self,
        app,
        *,
        max_body_bytes: int,
        route_limits: Optional[Mapping[str, int]] = None,
    ) -> None:
        super().__init__(app)
        self._default_limit = max(1, max_body_bytes)
        self._route_limits: Tuple[Tuple[str, int], ...] = tuple(
            sorted(
                ((prefix, max(1, limit)) for prefix, limit in (route_limits or {}).items()),
                key=lambda item: len(item[0]),
                reverse=True,
            )
        )

    def limit_for(self, path: str) -> int:
        for prefix, limit in self._route_limits:
            if path.startswith(prefix):
                return limit
        return self._default_limit

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        limit = self.limit_for(request.url.path)
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > limit:
            return self._reject(request, limit)
        if request.method in {"POST", "PUT", "PATCH"}:
            body = await request.body()
            if len(body) > limit:
                return self._reject(request, limit)
        return await call_next(request)

    @staticmethod
    def _reject(request: Request, limit: int) -> JSONResponse:
        PAYLOAD_TOO_LARGE.labels(route=request.url.path).inc()
        return JSONResponse(
            status_code=HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            content={"detail": f"Payload exceeds {limit} bytes"},
            headers={"X-Request-ID": request_id(request)},
        )


class RequestObserver:
    """Times one request, then records its metrics and a JSON completion log line."""

    def __init__(self, request: Request) -> None:
        self.request = request
        self.request_id = request_id(request)
        self._started = time.perf_counter()

    def finish(self, status_code: int) -> None:
        elapsed = time.perf_counter() - self._started
        method = self.request.method
        route = route_template(self.request)
        status = str(status_code)

        REQUEST_LATENCY.labels(method=method, route=route).observe(elapsed)
        REQUEST_COUNT.labels(method=method, route=route, status_code=status).inc()
        if status_code >= 500:
            REQUEST_ERRORS.labels(method=method, route=route, status_code=status).inc()

        record: Dict[str, object] = {
            "event": "request.complete",
            "request_id": self.request_id,
            "method": method,
            "path": self.request.url.path,
            "route": route,
            "status_code": status_code,
            "latency_ms": round(elapsed * 1000.0, 3),
        }
        for header, key in (("x-tenant-id", "tenant"), ("x-user-id", "user")):
            value = self.request.headers.get(header)
            if value:
                record[key] = value
        REQUEST_LOGGER.info(json.dumps(record, separators=(",", ":"), sort_keys=True))
