"""Deadline handling shared by every public engine operation."""

import asyncio
from typing import Awaitable, Optional, TypeVar

from ..domain.documents.exceptions import OperationCancelledError

T = TypeVar("T")


async def run_with_deadline(
    awaitable: Awaitable[T], timeout: Optional[float], operation: str
) -> T:
    """
    Await an operation under an optional deadline.

    Args:
        awaitable: Coroutine performing the operation
        timeout: Seconds allowed, or None for no deadline
        operation: Operation name reported on expiry

    Returns:
        The operation result

    Raises:
        OperationCancelledError: If the deadline expires first. The
            in-flight store call is aborted and its outcome is unknown.
    """
    if timeout is None:
        return await awaitable

    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise OperationCancelledError(operation=operation, timeout_seconds=timeout) from e
