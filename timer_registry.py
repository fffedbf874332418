"""Authoritative store of running exercise timers and rest countdowns.

A :class:`TimerRegistry` owns three pieces of state: the active exercise
timers, the rest timers and the running total of active seconds for the
day. Every mutation goes through a registry method, which updates memory,
writes the new state through :class:`~timer_persistence.TimerPersistence`
and then notifies subscribers, in that order.

Only one exercise timer is supposed to run at a time. The registry does not
enforce this; the owning page pauses or completes the previous timer before
starting the next one (see :meth:`TimerRegistry.running_timers`).
"""
import datetime
import logging
import threading
from typing import Callable, List, Optional

from auto_save import AutoSaveBridge
from events import LoggingNotifier, SingleSlotCallback, SubscriptionBus
from scheduler import IntervalScheduler, Scheduler, TickDrivers, system_clock_ms
from timer_models import (
    REST_DURATION_SECONDS,
    ActiveTimer,
    RegistrySnapshot,
    RestTimer,
    generate_timer_id,
)
from timer_persistence import TimerPersistence

logger = logging.getLogger(__name__)

_ACTIVE_FIELDS = set(ActiveTimer.model_fields) - {"id"}
_REST_FIELDS = set(RestTimer.model_fields) - {"id"}


def run_in_thread(work: Callable[[], None]) -> threading.Thread:
    # non-daemon: an auto-save in flight keeps the interpreter alive
    thread = threading.Thread(target=work, name="auto-save")
    thread.start()
    return thread


def run_inline(work: Callable[[], None]) -> None:
    work()


def _check_fields(changes: dict, allowed: set) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise TypeError(f"Unknown timer fields: {', '.join(sorted(unknown))}")


def _find(timers: list, timer_id: str) -> Optional[int]:
    for idx, timer in enumerate(timers):
        if timer.id == timer_id:
            return idx
    return None


class TimerRegistry:
    def __init__(
        self,
        persistence: TimerPersistence,
        scheduler: Optional[Scheduler] = None,
        clock: Optional[Callable[[], int]] = None,
        auto_save: Optional[AutoSaveBridge] = None,
        notifier=None,
        background: Callable[[Callable[[], None]], Optional[threading.Thread]] = run_in_thread,
        rest_seconds: int = REST_DURATION_SECONDS,
        tick_interval: float = 1.0,
    ) -> None:
        self.persistence = persistence
        self.scheduler = scheduler or IntervalScheduler()
        self.clock = clock or system_clock_ms
        self.auto_save = auto_save
        self.notifier = notifier or LoggingNotifier()
        self.background = background
        self.rest_seconds = rest_seconds
        self.changes = SubscriptionBus("timer registry")
        self.rest_completed = SubscriptionBus("rest completed")
        self._timer_stopped = SingleSlotCallback()
        self._lock = threading.RLock()
        self._pending_saves: List[threading.Thread] = []
        self._active_drivers = TickDrivers(self.scheduler, tick_interval)
        self._rest_drivers = TickDrivers(self.scheduler, tick_interval)
        self._active: List[ActiveTimer] = []
        self._rest: List[RestTimer] = []
        self._total = 0
        self._load()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def today(self) -> str:
        return datetime.date.fromtimestamp(self.clock() / 1000).isoformat()

    def _load(self) -> None:
        snapshot = self.persistence.load(self.today())
        with self._lock:
            self._active = list(snapshot.active_timers)
            self._rest = list(snapshot.rest_timers)
            self._total = snapshot.total_active_time
            for timer in self._active:
                if timer.is_running:
                    self._arm_active(timer.id)
            for timer in self._rest:
                self._arm_rest(timer.id)
        logger.info(
            "Restored %d active and %d rest timers",
            len(self._active),
            len(self._rest),
        )

    def _snapshot(self) -> RegistrySnapshot:
        return RegistrySnapshot(
            active_timers=[t.model_copy() for t in self._active],
            rest_timers=[t.model_copy() for t in self._rest],
            total_active_time=self._total,
        )

    def _commit(self) -> None:
        self.persistence.save(self._snapshot())
        self.changes.publish()

    def _arm_active(self, timer_id: str) -> None:
        self._active_drivers.arm(timer_id, lambda: self._tick_active(timer_id))

    def _arm_rest(self, timer_id: str) -> None:
        self._rest_drivers.arm(timer_id, lambda: self._tick_rest(timer_id))

    def _advance_active(self, idx: int, now: int) -> None:
        timer = self._active[idx]
        self._active[idx] = timer.model_copy(update={"elapsed": timer.elapsed_at(now)})

    def _advance_rest(self, idx: int, now: int) -> Optional[RestTimer]:
        """Update the countdown at ``idx``; return the timer if it expired."""
        timer = self._rest[idx]
        time_left = timer.time_left_at(now, self.rest_seconds)
        if time_left > 0:
            self._rest[idx] = timer.model_copy(update={"time_left": time_left})
            return None
        self._rest_drivers.disarm(timer.id)
        del self._rest[idx]
        return timer.model_copy(update={"time_left": 0})

    def _announce_rest_complete(self, timer: RestTimer) -> None:
        self.rest_completed.publish(timer)
        self.notifier.info(
            "Rest complete", f"Time for the next set of {timer.exercise_name}"
        )

    def _tick_active(self, timer_id: str) -> None:
        with self._lock:
            idx = _find(self._active, timer_id)
            if idx is None or not self._active[idx].is_running:
                self._active_drivers.disarm(timer_id)
                return
            self._advance_active(idx, self.clock())
            self._commit()

    def _tick_rest(self, timer_id: str) -> None:
        with self._lock:
            idx = _find(self._rest, timer_id)
            if idx is None:
                self._rest_drivers.disarm(timer_id)
                return
            expired = self._advance_rest(idx, self.clock())
            self._commit()
            if expired is not None:
                self._announce_rest_complete(expired)

    def _run_auto_save(self, timer: ActiveTimer) -> None:
        try:
            self.auto_save.save_from_timer(timer)
        except Exception:
            logger.exception("Auto-save of timer %s failed", timer.id)
            self.notifier.failure(
                "Workout Save Failed",
                "Failed to save workout automatically. Please try saving manually.",
            )

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        return self.changes.subscribe(callback)

    def register_timer_stopped_callback(self, callback: Callable[[str], None]) -> None:
        """Register the single listener for timers stopped from the dashboard.

        A later registration replaces this one.
        """
        self._timer_stopped.register(callback)

    def clear_timer_stopped_callback(self) -> None:
        self._timer_stopped.clear()

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    def get_active_timers(self) -> List[ActiveTimer]:
        with self._lock:
            return [t.model_copy() for t in self._active]

    def get_rest_timers(self) -> List[RestTimer]:
        with self._lock:
            return [t.model_copy() for t in self._rest]

    def get_total_active_time(self) -> int:
        return self._total

    def get_timer(self, timer_id: str) -> Optional[ActiveTimer]:
        with self._lock:
            idx = _find(self._active, timer_id)
            return None if idx is None else self._active[idx].model_copy()

    def running_timers(self) -> List[ActiveTimer]:
        with self._lock:
            return [t.model_copy() for t in self._active if t.is_running]

    def snapshot(self) -> RegistrySnapshot:
        with self._lock:
            return self._snapshot()

    def is_driving(self, timer_id: str) -> bool:
        return self._active_drivers.is_armed(timer_id) or self._rest_drivers.is_armed(
            timer_id
        )

    # ------------------------------------------------------------------
    # Exercise timers
    # ------------------------------------------------------------------

    def add_active_timer(
        self,
        workout_name: str,
        exercise_name: str,
        elapsed: int = 0,
        is_running: bool = False,
        start_time: Optional[int] = None,
        last_pause_time: Optional[int] = None,
        correlation_id: Optional[str] = None,
    ) -> str:
        """Add a timer, or update the existing one for the same exercise.

        With a ``correlation_id`` the existing timer is looked up by that id,
        otherwise by the workout and exercise names.
        """
        fields = {
            "workout_name": workout_name,
            "exercise_name": exercise_name,
            "elapsed": elapsed,
            "is_running": is_running,
            "start_time": self.clock() if start_time is None else start_time,
            "last_pause_time": last_pause_time,
            "correlation_id": correlation_id,
        }
        with self._lock:
            for timer in self._active:
                if correlation_id is not None:
                    same = timer.correlation_id == correlation_id
                else:
                    same = (
                        timer.workout_name == workout_name
                        and timer.exercise_name == exercise_name
                    )
                if same:
                    self.update_active_timer(timer.id, **fields)
                    return timer.id
            timer = ActiveTimer(id=generate_timer_id("timer", self.clock()), **fields)
            self._active.append(timer)
            if timer.is_running:
                self._arm_active(timer.id)
            self._commit()
            return timer.id

    def update_active_timer(self, timer_id: str, **changes) -> None:
        _check_fields(changes, _ACTIVE_FIELDS)
        with self._lock:
            idx = _find(self._active, timer_id)
            if idx is not None:
                old = self._active[idx]
                new = ActiveTimer.model_validate({**old.model_dump(), **changes})
                self._active[idx] = new
                if old.is_running and not new.is_running:
                    self._active_drivers.disarm(timer_id)
                elif not old.is_running and new.is_running:
                    self._arm_active(timer_id)
            self._commit()

    def remove_active_timer(self, timer_id: str, from_dashboard: bool = False) -> None:
        """Stop and drop a timer.

        ``from_dashboard`` marks a stop coming from outside the owning workout
        form: the workout is then auto-saved and the timer-stopped callback
        fires. Completing an exercise from its own form passes ``False``.
        """
        with self._lock:
            idx = _find(self._active, timer_id)
            timer = None if idx is None else self._active[idx]
            if timer is not None and timer.is_running:
                self._total += timer.elapsed
            self._active_drivers.disarm(timer_id)
            self._active = [t for t in self._active if t.id != timer_id]
            self._commit()

        if not from_dashboard or timer is None:
            return
        logger.info("Timer %s stopped from dashboard", timer_id)
        if self.auto_save is not None:
            started = self.background(lambda: self._run_auto_save(timer))
            if isinstance(started, threading.Thread):
                with self._lock:
                    self._pending_saves = [
                        t for t in self._pending_saves if t.is_alive()
                    ] + [started]
        self._timer_stopped.fire(timer_id)

    def start_exercise_timer(
        self,
        workout_name: str,
        exercise_name: str,
        correlation_id: Optional[str] = None,
    ) -> str:
        return self.add_active_timer(
            workout_name,
            exercise_name,
            elapsed=0,
            is_running=True,
            start_time=self.clock(),
            correlation_id=correlation_id,
        )

    def pause_timer(self, timer_id: str) -> None:
        timer = self.get_timer(timer_id)
        if timer is not None and timer.is_running:
            self.update_active_timer(
                timer_id, is_running=False, last_pause_time=self.clock()
            )

    def resume_timer(self, timer_id: str) -> None:
        timer = self.get_timer(timer_id)
        if timer is not None and not timer.is_running:
            self.update_active_timer(
                timer_id,
                is_running=True,
                start_time=self.clock() - timer.elapsed * 1000,
                last_pause_time=None,
            )

    def stop_timer(self, timer_id: str) -> None:
        self.remove_active_timer(timer_id, from_dashboard=True)

    def complete_exercise(self, timer_id: str) -> None:
        self.remove_active_timer(timer_id, from_dashboard=False)

    # ------------------------------------------------------------------
    # Rest timers
    # ------------------------------------------------------------------

    def add_rest_timer(
        self,
        workout_name: str,
        exercise_name: str,
        start_time: Optional[int] = None,
        time_left: Optional[int] = None,
        correlation_id: Optional[str] = None,
    ) -> str:
        now = self.clock()
        start = now if start_time is None else start_time
        timer = RestTimer(
            id=generate_timer_id("rest", now),
            workout_name=workout_name,
            exercise_name=exercise_name,
            start_time=start,
            time_left=(
                max(0, self.rest_seconds - (now - start) // 1000)
                if time_left is None
                else time_left
            ),
            correlation_id=correlation_id,
        )
        with self._lock:
            self._rest.append(timer)
            self._arm_rest(timer.id)
            self._commit()
        return timer.id

    def start_rest_timer(
        self,
        workout_name: str,
        exercise_name: str,
        correlation_id: Optional[str] = None,
    ) -> str:
        return self.add_rest_timer(
            workout_name, exercise_name, correlation_id=correlation_id
        )

    def update_rest_timer(self, timer_id: str, **changes) -> None:
        _check_fields(changes, _REST_FIELDS)
        with self._lock:
            idx = _find(self._rest, timer_id)
            if idx is not None:
                self._rest[idx] = RestTimer.model_validate(
                    {**self._rest[idx].model_dump(), **changes}
                )
            self._commit()

    def remove_rest_timer(self, timer_id: str) -> None:
        with self._lock:
            self._rest_drivers.disarm(timer_id)
            self._rest = [t for t in self._rest if t.id != timer_id]
            self._commit()

    def stop_rest_timer(self, timer_id: str) -> None:
        self.remove_rest_timer(timer_id)

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    def refresh(self) -> None:
        """Bring elapsed and remaining times up to date without waiting a tick."""
        with self._lock:
            now = self.clock()
            for idx, timer in enumerate(self._active):
                if timer.is_running:
                    self._advance_active(idx, now)
            expired = []
            for timer in list(self._rest):
                done = self._advance_rest(_find(self._rest, timer.id), now)
                if done is not None:
                    expired.append(done)
            self._commit()
            for timer in expired:
                self._announce_rest_complete(timer)

    def reset_daily_total(self) -> None:
        with self._lock:
            self._total = 0
            self._commit()

    def clear_all_timers(self) -> None:
        """Drop every timer; the workout draft is left untouched."""
        with self._lock:
            self._active_drivers.disarm_all()
            self._rest_drivers.disarm_all()
            self._active = []
            self._rest = []
            self.persistence.clear_timer_keys()
            logger.info("All timers cleared (workout draft preserved)")
            self.changes.publish()

    def clear_all_timers_and_session(self) -> None:
        self.clear_all_timers()
        self.persistence.clear_workout_draft()
        logger.info("Workout draft cleared")

    def close(self, timeout: Optional[float] = None) -> None:
        """Stop ticking and wait for auto-saves still in flight.

        Persisted timers resume on the next load.
        """
        self._active_drivers.disarm_all()
        self._rest_drivers.disarm_all()
        with self._lock:
            pending, self._pending_saves = self._pending_saves, []
        for thread in pending:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Auto-save still running after %s seconds", timeout)
