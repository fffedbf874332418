"""Timer state models shared by the registry, persistence and auto-save."""
import random
import string
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

REST_DURATION_SECONDS = 90

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_timer_id(prefix: str, now_ms: int) -> str:
    """Return ``<prefix>-<epoch ms>-<9 base36 chars>``.

    Collisions are not checked; two ids created in the same millisecond
    would also need identical random suffixes.
    """
    suffix = "".join(random.choice(_ID_ALPHABET) for _ in range(9))
    return f"{prefix}-{now_ms}-{suffix}"


class _TimerModel(BaseModel):
    # persisted blobs keep the camelCase names of the browser client
    model_config = ConfigDict(populate_by_name=True)

    def to_storage(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ActiveTimer(_TimerModel):
    """Stopwatch tracking time spent on one exercise."""

    id: str
    workout_name: str = Field(alias="workoutName")
    exercise_name: str = Field(alias="exerciseName")
    elapsed: int = Field(default=0, ge=0)
    is_running: bool = Field(default=False, alias="isRunning")
    start_time: int = Field(alias="startTime")  # epoch ms
    last_pause_time: Optional[int] = Field(default=None, alias="lastPauseTime")
    correlation_id: Optional[str] = Field(default=None, alias="correlationId")

    def elapsed_at(self, now_ms: int) -> int:
        return max(0, (now_ms - self.start_time) // 1000)


class RestTimer(_TimerModel):
    """Fixed-window countdown between exercises."""

    id: str
    workout_name: str = Field(alias="workoutName")
    exercise_name: str = Field(alias="exerciseName")
    time_left: int = Field(default=REST_DURATION_SECONDS, ge=0, alias="timeLeft")
    start_time: int = Field(alias="startTime")  # epoch ms
    correlation_id: Optional[str] = Field(default=None, alias="correlationId")

    def time_left_at(self, now_ms: int, window: int = REST_DURATION_SECONDS) -> int:
        return max(0, window - (now_ms - self.start_time) // 1000)


class RegistrySnapshot(BaseModel):
    active_timers: List[ActiveTimer] = Field(default_factory=list)
    rest_timers: List[RestTimer] = Field(default_factory=list)
    total_active_time: int = 0
