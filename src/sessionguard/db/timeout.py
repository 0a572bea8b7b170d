"""Bounded store calls.

Learn: A hung database must not hang a login. Every store call is wrapped
in asyncio.wait_for; on timeout we raise StoreTimeoutError, which the
orchestrator never converts into a success (fail closed).
"""

import asyncio
from typing import Awaitable, TypeVar

from sessionguard.errors import StoreTimeoutError

T = TypeVar("T")


async def bounded(awaitable: Awaitable[T], timeout: float) -> T:
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        raise StoreTimeoutError(f"store call exceeded {timeout:.1f}s") from e
