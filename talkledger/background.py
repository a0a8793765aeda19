import asyncio
from collections import Counter
from collections.abc import Awaitable

from loguru import logger

# Failure counts per channel, exposed on /health
failures: Counter[str] = Counter()

_tasks: set[asyncio.Task] = set()


async def _guarded(channel: str, coro: Awaitable) -> None:
    try:
        await coro
    except Exception as e:
        failures[channel] += 1
        logger.error("Background task {} failed: {}", channel, e)


def spawn(channel: str, coro: Awaitable) -> asyncio.Task:
    """Fire and forget a side effect; errors go to the failure counter, never to the caller."""
    task = asyncio.get_running_loop().create_task(_guarded(channel, coro))
    # Keep a strong reference until it finishes
    _tasks.add(task)
    task.add_done_callback(_tasks.discard)
    return task


async def drain() -> None:
    """Wait for every in-flight side effect to finish."""
    while _tasks:
        await asyncio.gather(*list(_tasks))
