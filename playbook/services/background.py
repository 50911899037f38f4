"""
Fire-and-forget background work, decoupled from the request/response path.

Failures never reach the caller. They are logged on their own channel
("playbook.background") so they can be routed and alerted on separately.
"""

import asyncio
import logging
from typing import Coroutine, Optional

logger = logging.getLogger("playbook.background")

# Strong references so running tasks are not garbage collected mid-flight
_tasks: set[asyncio.Task] = set()


def spawn(coro: Coroutine, name: str) -> Optional[asyncio.Task]:
    """Schedule a coroutine without awaiting it. Returns None outside an event loop."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning("No running loop, dropping background task %s", name)
        coro.close()
        return None

    task = loop.create_task(_guarded(coro, name), name=name)
    _tasks.add(task)
    task.add_done_callback(_tasks.discard)
    return task


async def _guarded(coro: Coroutine, name: str) -> None:
    try:
        await coro
        logger.debug("Background task %s finished", name)
    except asyncio.CancelledError:
        logger.info("Background task %s cancelled", name)
        raise
    except Exception as e:
        logger.error("Background task %s failed: %s: %s", name, type(e).__name__, e)


def pending_count() -> int:
    return len(_tasks)


async def drain(timeout: float = 5.0) -> None:
    """Wait for in-flight tasks. Called on shutdown and in tests."""
    if not _tasks:
        return
    done, pending = await asyncio.wait(set(_tasks), timeout=timeout)
    for task in pending:
        task.cancel()
    if pending:
        logger.warning("Cancelled %d background task(s) on drain", len(pending))
