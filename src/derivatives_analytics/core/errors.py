"""Error taxonomy shared by the analytics operations."""

from __future__ import annotations


class DerivativesError(Exception):
    """Base class for every error raised by the analytics engine."""


class ValidationError(DerivativesError, ValueError):
    """Raised when inputs are missing or malformed before any numeric work runs."""


class NotFoundError(ValidationError):
    """Raised when a referenced record does not exist for the tenant."""


class InstrumentNotFoundError(NotFoundError):
    """Raised when a referenced instrument does not exist for the tenant."""

    def __init__(self, instrument_id: str, tenant_id: str | None = None) -> None:
        message = f"Derivative instrument not found: {instrument_id}"
        if tenant_id:
            message = f"{message} (tenant {tenant_id})"
        super().__init__(message)
        self.instrument_id = instrument_id
        self.tenant_id = tenant_id


class UnsupportedOperationError(DerivativesError, ValueError):
    """Raised when an operation is requested for an instrument that cannot support it."""


class DependencyError(DerivativesError, RuntimeError):
    """Raised when market data, persistence or the worker pool is unavailable.

    The engine never retries these; retry policy belongs to the caller.
    """


class EngineSaturatedError(DependencyError):
    """Raised when the pricing engine cannot admit more work."""
