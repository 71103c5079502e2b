# store_backend/shared/scheduler.py

# One background scheduler owning named recurring tasks
# (payment reconciliation, expiry sweep, auto-renewal sweep, ...).
# Each task body can also be invoked directly with run_now(), so sweeps are
# testable without waiting on real timers.

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .logger import get_logger
from .utils import utcnow

logger = get_logger("scheduler")

TaskBody = Callable[[], Awaitable[Any]]
Interval = Union[float, Callable[[], float]]


class RecurringTask:
    """A named coroutine run repeatedly with a fixed or adaptive interval."""

    def __init__(self, name: str, body: TaskBody, interval: Interval, run_on_start: bool = True):
        self.name = name
        self.body = body
        self._interval = interval
        self.run_on_start = run_on_start
        self.enabled = True
        self.runs = 0
        self.failures = 0
        self.last_run_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.last_result: Any = None
        self._handle: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def interval(self) -> float:
        """Current interval in seconds (re-evaluated before every sleep for adaptive tasks)."""
        return self._interval() if callable(self._interval) else float(self._interval)

    @property
    def is_running(self) -> bool:
        return self._handle is not None and not self._handle.done()

    async def run_once(self) -> Any:
        """Runs the task body once. Errors are logged and recorded, never raised."""
        async with self._lock:
            self.last_run_at = utcnow()
            self.runs += 1
            try:
                self.last_result = await self.body()
                self.last_error = None
                return self.last_result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failures += 1
                self.last_error = str(e)
                logger.error("Scheduled task failed", task=self.name, error=str(e), exc_info=True)
                return None

    async def _loop(self) -> None:
        if not self.run_on_start:
            await asyncio.sleep(self.interval)
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.is_running:
            return
        self._handle = asyncio.create_task(self._loop(), name=f"scheduler:{self.name}")

    async def stop(self) -> None:
        if self._handle is None:
            return
        self._handle.cancel()
        try:
            await self._handle
        except asyncio.CancelledError:
            pass
        self._handle = None

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "running": self.is_running,
            "interval_seconds": self.interval,
            "runs": self.runs,
            "failures": self.failures,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
        }


class Scheduler:
    """Owns the recurring tasks and their lifecycle."""

    def __init__(self):
        self._tasks: Dict[str, RecurringTask] = {}
        self.started = False

    def add_task(self, name: str, body: TaskBody, interval: Interval, run_on_start: bool = True, enabled: bool = True) -> RecurringTask:
        if name in self._tasks:
            raise ValueError(f"Task '{name}' is already registered")
        task = RecurringTask(name, body, interval, run_on_start=run_on_start)
        task.enabled = enabled
        self._tasks[name] = task
        if self.started and enabled:
            task.start()
        return task

    def get_task(self, name: str) -> RecurringTask:
        try:
            return self._tasks[name]
        except KeyError:
            raise KeyError(f"Unknown scheduled task '{name}'") from None

    @property
    def task_names(self) -> List[str]:
        return list(self._tasks)

    async def run_now(self, name: str) -> Any:
        """Runs one task body immediately, outside its timer."""
        return await self.get_task(name).run_once()

    def start(self) -> None:
        if self.started:
            return
        self.started = True
        for task in self._tasks.values():
            if task.enabled:
                task.start()
        logger.info("Scheduler started", tasks=[t.name for t in self._tasks.values() if t.enabled])

    async def stop(self) -> None:
        for task in self._tasks.values():
            await task.stop()
        self.started = False
        logger.info("Scheduler stopped")

    def status(self) -> Dict[str, Any]:
        return {
            "started": self.started,
            "tasks": [task.status() for task in self._tasks.values()],
        }
