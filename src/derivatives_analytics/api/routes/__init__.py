"""HTTP routes for the derivatives analytics API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, TypeVar

from fastapi import HTTPException, status

from ...core.errors import NotFoundError, UnsupportedOperationError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


async def run_operation(description: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking operation off the event loop and map domain errors to HTTP errors."""

    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except UnsupportedOperationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except ValueError as exc:
        # bad inputs, unsupported model or strategy type, etc.
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RuntimeError as exc:
        # market data, persistence or the worker pool is unavailable
        LOGGER.exception("%s unavailable", description, exc_info=exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{description} unavailable",
        ) from exc


__all__ = ["run_operation"]
