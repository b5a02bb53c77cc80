"""
Scheduler

Background loops for the periodic acquisition jobs:

- download sync (every 5s by default)
- RSS sync (every 15 min)
- missing content search (hourly)
- cutoff unmet search (every 6h)

Each job is single-flight: a tick that comes due while the previous run is
still going is skipped. Every run gets its own short-lived database session.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from acquirarr.config import Config
from acquirarr.database import SessionLocal
from acquirarr.services.structured_logging import CorrelationContext

logger = logging.getLogger(__name__)

Job = Callable[[Session], Awaitable[Any]]


class PeriodicTask:
    """
    One periodic job.

    Args:
        name: Job name used in logs and status
        interval: Seconds between two run starts
        job: Coroutine function taking a database session
        run_on_start: Run immediately instead of after the first interval
    """

    def __init__(self, name: str, interval: float, job: Job, run_on_start: bool = False):
        self.name = name
        self.interval = interval
        self.job = job
        self.run_on_start = run_on_start
        self._lock = asyncio.Lock()
        self.last_run: Optional[datetime] = None
        self.last_duration: Optional[float] = None
        self.last_result: Any = None
        self.last_error: Optional[str] = None
        self.run_count = 0
        self.skipped_count = 0

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_once(self, session_factory: Callable[[], Session] = SessionLocal) -> Any:
        """
        Run the job now unless a run is already in progress.

        Errors are logged and recorded, never raised.
        """
        if self._lock.locked():
            self.skipped_count += 1
            logger.debug(f"[Scheduler] {self.name} still running, skipping tick")
            return None

        async with self._lock:
            started = time.monotonic()
            self.last_run = datetime.utcnow()
            db = session_factory()
            try:
                with CorrelationContext(job=self.name):
                    self.last_result = await self.job(db)
                self.last_error = None
                return self.last_result
            except Exception as e:
                self.last_error = f"{type(e).__name__}: {e}"
                logger.error(f"[Scheduler] {self.name} failed: {self.last_error}")
                return None
            finally:
                db.close()
                self.run_count += 1
                self.last_duration = time.monotonic() - started

    def get_status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "interval": self.interval,
            "running": self.is_running,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_duration": round(self.last_duration, 3) if self.last_duration is not None else None,
            "last_error": self.last_error,
            "run_count": self.run_count,
            "skipped_count": self.skipped_count,
        }


class Scheduler:
    """
    Runs a set of PeriodicTasks, one asyncio loop each.

    Usage:
        scheduler = Scheduler()
        scheduler.add_task(PeriodicTask("rss_sync", 900, rss.sync_all))
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal, enabled: bool = True):
        self.session_factory = session_factory
        self.enabled = enabled
        self.tasks: Dict[str, PeriodicTask] = {}
        self._loops: List[asyncio.Task] = []
        self._inflight: set = set()
        self._running = False

    def add_task(self, task: PeriodicTask) -> None:
        self.tasks[task.name] = task

    async def start(self) -> None:
        """Start one loop per registered task."""
        if self._running:
            logger.warning("Scheduler already running")
            return
        if not self.enabled:
            logger.info("Scheduler is disabled")
            return

        self._running = True
        for task in self.tasks.values():
            self._loops.append(asyncio.create_task(self._loop(task), name=f"scheduler:{task.name}"))
        logger.info(f"Scheduler started ({len(self.tasks)} tasks)")

    async def stop(self) -> None:
        """Cancel every loop and wait for them to exit."""
        if not self._running:
            return
        logger.info("Stopping scheduler...")
        self._running = False
        for loop in self._loops + list(self._inflight):
            loop.cancel()
        await asyncio.gather(*self._loops, *self._inflight, return_exceptions=True)
        self._loops.clear()
        self._inflight.clear()
        logger.info("Scheduler stopped")

    async def _loop(self, task: PeriodicTask) -> None:
        if not task.run_on_start:
            await asyncio.sleep(task.interval)
        while self._running:
            try:
                # runs detached so a slow job does not delay the next tick
                run = asyncio.create_task(task.run_once(self.session_factory))
                self._inflight.add(run)
                run.add_done_callback(self._inflight.discard)
                await asyncio.sleep(task.interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in scheduler loop {task.name}: {e}")
                await asyncio.sleep(task.interval)

    async def trigger(self, name: str) -> Any:
        """Run a task now, outside its schedule."""
        task = self.tasks.get(name)
        if task is None:
            raise KeyError(name)
        return await task.run_once(self.session_factory)

    @property
    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "enabled": self.enabled,
            "tasks": [task.get_status() for task in self.tasks.values()],
        }


def build_default_scheduler() -> Scheduler:
    """Scheduler wired to the process-wide acquisition services."""
    from acquirarr.services.auto_search import get_auto_search_service
    from acquirarr.services.download_sync import get_download_sync_service
    from acquirarr.services.rss_sync import get_rss_sync_service

    scheduler = Scheduler(enabled=Config.SCHEDULER_ENABLED)
    scheduler.add_task(PeriodicTask(
        "download_sync", Config.DOWNLOAD_SYNC_INTERVAL,
        lambda db: get_download_sync_service().sync_all(db), run_on_start=True,
    ))
    scheduler.add_task(PeriodicTask(
        "rss_sync", Config.RSS_SYNC_INTERVAL,
        lambda db: get_rss_sync_service().sync_all(db),
    ))
    scheduler.add_task(PeriodicTask(
        "missing_search", Config.MISSING_SEARCH_INTERVAL,
        lambda db: get_auto_search_service().search_all_missing(db),
    ))
    scheduler.add_task(PeriodicTask(
        "cutoff_search", Config.CUTOFF_SEARCH_INTERVAL,
        lambda db: get_auto_search_service().search_all_cutoff_unmet(db),
    ))
    return scheduler


# Global scheduler instance
_scheduler: Optional[Scheduler] = None


def get_scheduler() -> Scheduler:
    """Get the global scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = build_default_scheduler()
    return _scheduler


async def start_scheduler() -> None:
    await get_scheduler().start()


async def stop_scheduler() -> None:
    await get_scheduler().stop()
