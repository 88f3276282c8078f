"""Bounded store calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, TypeVar

from ..errors import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def bounded(call: Awaitable[T], timeout: float, operation: str) -> T:
    """Await a store call, surfacing a timeout as :class:`StoreUnavailableError`."""
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.error(f"Store call {operation} timed out after {timeout}s")
        raise StoreUnavailableError(
            operation, f"store call {operation} timed out after {timeout}s"
        ) from exc
