"""Bounded store calls."""

import asyncio
from typing import Any, Awaitable, TypeVar

import structlog

from ..domain.errors import TransientStoreError

logger = structlog.get_logger()

T = TypeVar("T")


async def bounded(awaitable: Awaitable[T], timeout: float, operation: str, **context: Any) -> T:
    """Await a store call, turning timeouts and connection failures into TransientStoreError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.error("store_timeout", operation=operation, timeout=timeout, **context)
        raise TransientStoreError(
            f"{operation} timed out after {timeout}s",
            details={"operation": operation},
        )
    except (ConnectionError, OSError) as e:
        logger.error("store_unavailable", operation=operation, error=str(e), **context)
        raise TransientStoreError(
            f"{operation} failed: {e}",
            details={"operation": operation},
        ) from e
