"""
Background task supervision

Fire-and-forget work (notifications, re-search after a failed download)
runs as asyncio tasks spawned through a TaskSupervisor. The supervisor keeps
a strong reference to every task until it finishes and logs any exception
it ends with, so nothing fails silently.
"""

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, List, Optional, Set

logger = logging.getLogger(__name__)

ErrorHook = Callable[[str, BaseException], None]

MAX_RECORDED_FAILURES = 100


class TaskSupervisor:
    """
    Owner of spawned background tasks.

    Usage:
        supervisor.spawn(notifier.send(notification), name="notify:grab")
        ...
        await supervisor.drain()  # on shutdown or in tests
    """

    def __init__(self, on_error: Optional[ErrorHook] = None):
        self._tasks: Set[asyncio.Task] = set()
        self._on_error = on_error
        self.failures: Deque[str] = deque(maxlen=MAX_RECORDED_FAILURES)

    def spawn(self, coro: Awaitable, name: str = "background") -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(t, name))
        return task

    def _finished(self, task: asyncio.Task, name: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        logger.error(f"Background task '{name}' failed: {type(error).__name__}: {error}")
        self.failures.append(f"{name}: {error}")
        if self._on_error:
            try:
                self._on_error(name, error)
            except Exception as hook_error:
                logger.error(f"Error hook for '{name}' raised: {hook_error}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def recent_failures(self, limit: int = 10) -> List[str]:
        """Newest failures last."""
        return list(self.failures)[-limit:]

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for every spawned task to finish."""
        while self._tasks:
            await asyncio.wait(list(self._tasks), timeout=timeout)
            if timeout is not None:
                break

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()


_supervisor: Optional[TaskSupervisor] = None


def get_task_supervisor() -> TaskSupervisor:
    """Process-wide supervisor used when a component is not given one."""
    global _supervisor
    if _supervisor is None:
        _supervisor = TaskSupervisor()
    return _supervisor
