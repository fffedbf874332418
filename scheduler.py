"""Recurring wakeups for running timers.

Production code uses :class:`IntervalScheduler`, which runs each repeating
task on its own daemon thread. :class:`ManualScheduler` drives the same
callbacks from an explicit :class:`ManualClock` so time can be simulated.
"""
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


def system_clock_ms() -> int:
    return int(time.time() * 1000)


class TaskHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def schedule_repeating(
        self, interval: float, callback: Callable[[], None]
    ) -> TaskHandle: ...


class RepeatingTask(threading.Thread):
    """Background thread calling ``callback`` every ``interval`` seconds."""

    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        super().__init__(daemon=True)
        self.interval = interval
        self.callback = callback
        self._stopped = threading.Event()

    def run(self) -> None:
        while not self._stopped.wait(self.interval):
            try:
                self.callback()
            except Exception:
                logger.exception("Repeating task failed")

    def cancel(self) -> None:
        self._stopped.set()

    @property
    def cancelled(self) -> bool:
        return self._stopped.is_set()


class IntervalScheduler:
    def schedule_repeating(
        self, interval: float, callback: Callable[[], None]
    ) -> RepeatingTask:
        task = RepeatingTask(interval, callback)
        task.start()
        return task


class ManualClock:
    """Settable epoch-millisecond clock."""

    def __init__(self, now_ms: Optional[int] = None) -> None:
        self.now = system_clock_ms() if now_ms is None else now_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


class _ManualTask:
    def __init__(self, interval: float, callback: Callable[[], None], due: int) -> None:
        self.interval_ms = max(1, int(interval * 1000))
        self.callback = callback
        self.due = due
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Fires repeating tasks only when :meth:`advance` moves the clock."""

    def __init__(self, clock: ManualClock) -> None:
        self.clock = clock
        self.tasks: List[_ManualTask] = []

    def schedule_repeating(
        self, interval: float, callback: Callable[[], None]
    ) -> _ManualTask:
        task = _ManualTask(interval, callback, self.clock() + int(interval * 1000))
        self.tasks.append(task)
        return task

    def advance(self, seconds: int) -> None:
        """Step the clock one second at a time, running due tasks."""
        for _ in range(int(seconds)):
            self.clock.advance(1)
            self._run_due()

    def _run_due(self) -> None:
        now = self.clock()
        for task in list(self.tasks):
            while not task.cancelled and task.due <= now:
                task.due += task.interval_ms
                try:
                    task.callback()
                except Exception:
                    logger.exception("Repeating task failed")
        self.tasks = [t for t in self.tasks if not t.cancelled]

    @property
    def active_count(self) -> int:
        return len([t for t in self.tasks if not t.cancelled])


class TickDrivers:
    """At most one repeating task per timer id."""

    def __init__(self, scheduler: Scheduler, interval: float = 1.0) -> None:
        self.scheduler = scheduler
        self.interval = interval
        self._handles: Dict[str, TaskHandle] = {}
        self._lock = threading.Lock()

    def arm(self, timer_id: str, callback: Callable[[], None]) -> bool:
        """Start driving ``timer_id``; returns ``False`` if already armed."""
        with self._lock:
            if timer_id in self._handles:
                return False
            self._handles[timer_id] = self.scheduler.schedule_repeating(
                self.interval, callback
            )
            return True

    def disarm(self, timer_id: str) -> None:
        with self._lock:
            handle = self._handles.pop(timer_id, None)
        if handle is not None:
            handle.cancel()

    def disarm_all(self) -> None:
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle.cancel()

    def is_armed(self, timer_id: str) -> bool:
        return timer_id in self._handles

    def armed_ids(self) -> List[str]:
        return list(self._handles)

    def __len__(self) -> int:
        return len(self._handles)
