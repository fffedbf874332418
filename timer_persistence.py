import json
import logging
from typing import List, Optional, Protocol, Type, TypeVar

from pydantic import ValidationError

from timer_models import ActiveTimer, RegistrySnapshot, RestTimer

logger = logging.getLogger(__name__)

ACTIVE_TIMERS_KEY = "fit-tracker-active-timers"
REST_TIMERS_KEY = "fit-tracker-rest-timers"
TOTAL_TIME_KEY = "fit-tracker-total-time"
WORKOUT_SESSION_KEY = "fit-tracker-workout-session"
DAY_STAMP_KEY = "activeTimerDate"
DAY_TOTAL_KEY = "activeTimerTotal"

TIMER_KEYS = (ACTIVE_TIMERS_KEY, REST_TIMERS_KEY, TOTAL_TIME_KEY)

T = TypeVar("T", ActiveTimer, RestTimer)


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class TimerPersistence:
    """Best-effort persistence of registry state and the workout draft.

    Every key is read and written on its own so a failure on one leaves
    the others intact. Nothing here raises; failures are logged and the
    caller carries on with whatever was in memory.
    """

    def __init__(self, storage: KeyValueStorage) -> None:
        self.storage = storage

    # ------------------------------------------------------------------
    # low level
    # ------------------------------------------------------------------

    def _read(self, key: str) -> Optional[str]:
        try:
            return self.storage.get_item(key)
        except Exception as exc:
            logger.error("Error reading %s: %s", key, exc)
            return None

    def _write(self, key: str, value: str) -> bool:
        try:
            self.storage.set_item(key, value)
            return True
        except Exception as exc:
            logger.error("Error persisting %s: %s", key, exc)
            return False

    def _remove(self, key: str) -> None:
        try:
            self.storage.remove_item(key)
        except Exception as exc:
            logger.error("Error removing %s: %s", key, exc)

    def _read_list(self, key: str, model: Type[T]) -> List[T]:
        raw = self._read(key)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Discarding malformed %s", key)
            return []
        if not isinstance(data, list):
            logger.warning("Discarding %s: expected a list", key)
            return []
        items: List[T] = []
        for entry in data:
            try:
                items.append(model.model_validate(entry))
            except ValidationError as exc:
                logger.warning("Skipping malformed entry in %s: %s", key, exc)
        return items

    @staticmethod
    def _parse_int(raw: Optional[str]) -> Optional[int]:
        if raw is None:
            return None
        try:
            return int(float(raw))
        except ValueError:
            return None

    # ------------------------------------------------------------------
    # timers
    # ------------------------------------------------------------------

    def save(self, snapshot: RegistrySnapshot) -> None:
        self._write(
            ACTIVE_TIMERS_KEY,
            json.dumps([t.to_storage() for t in snapshot.active_timers]),
        )
        self._write(
            REST_TIMERS_KEY,
            json.dumps([t.to_storage() for t in snapshot.rest_timers]),
        )
        self.save_total(snapshot.total_active_time)

    def save_total(self, total: int) -> None:
        self._write(TOTAL_TIME_KEY, str(total))
        self._write(DAY_TOTAL_KEY, str(total))

    def load(self, today: str) -> RegistrySnapshot:
        """Restore state; ``today`` is an ISO date used for the day counter."""
        active = self._read_list(ACTIVE_TIMERS_KEY, ActiveTimer)
        rest = self._read_list(REST_TIMERS_KEY, RestTimer)
        total = self._load_daily_total(today)
        return RegistrySnapshot(
            active_timers=active, rest_timers=rest, total_active_time=total
        )

    def _load_daily_total(self, today: str) -> int:
        if self._read(DAY_STAMP_KEY) == today:
            total = self._parse_int(self._read(DAY_TOTAL_KEY))
            if total is None:
                total = self._parse_int(self._read(TOTAL_TIME_KEY))
            return max(0, total or 0)
        logger.info("New day %s, resetting active time total", today)
        self._write(DAY_STAMP_KEY, today)
        self.save_total(0)
        return 0

    def clear_timer_keys(self) -> None:
        for key in TIMER_KEYS:
            self._remove(key)

    # ------------------------------------------------------------------
    # workout draft
    # ------------------------------------------------------------------

    def load_workout_draft(self) -> Optional[dict]:
        raw = self._read(WORKOUT_SESSION_KEY)
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring malformed workout draft")
            return None
        if not isinstance(data, dict):
            logger.warning("Ignoring workout draft: expected an object")
            return None
        return data

    def save_workout_draft(self, draft: dict) -> None:
        self._write(WORKOUT_SESSION_KEY, json.dumps(draft))

    def clear_workout_draft(self) -> None:
        self._remove(WORKOUT_SESSION_KEY)

    def has_workout_draft(self) -> bool:
        return self.load_workout_draft() is not None
