"""Async utilities for concurrent processing."""

import asyncio
from typing import Awaitable, Iterable, List, TypeVar

T = TypeVar('T')


async def gather_cancel_on_error(aws: Iterable[Awaitable[T]]) -> List[T]:
    """Run awaitables concurrently; on the first exception cancel the rest.

    Results are returned in submission order. Workers are expected to contain
    their own recoverable errors, so anything that escapes is treated as fatal
    for the whole group and re-raised once the siblings have been cancelled.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    if not tasks:
        return []

    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        for task in tasks:
            if task in done and not task.cancelled() and task.exception() is not None:
                raise task.exception()
        return [task.result() for task in tasks]
    finally:
        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
