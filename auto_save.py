"""Save a workout automatically when its timer is stopped from the dashboard.

The workout form normally saves its own workout. When the user stops a
running exercise timer from somewhere else, the form may not be on screen,
so the bridge rebuilds the workout from the persisted draft (or, without a
draft, from the timer alone) and submits it to the API.
"""
import copy
import logging
from typing import Any, Callable, List, Optional

import requests

from events import LoggingNotifier
from timer_models import ActiveTimer
from timer_persistence import TimerPersistence

logger = logging.getLogger(__name__)

DEFAULT_WORKOUT_NAME = "Quick Workout"
CARDIO_THRESHOLD_SECONDS = 1200

# Client-side caches that show saved workouts and derived numbers.
INVALIDATED_QUERIES = (
    "/api/workouts",
    "/api/workouts-with-exercises",
    "/api/stats/workouts",
    "/api/goals/monthly",
    "/api/community/presence",
)


class AutoSaveResult:
    SAVED = "saved"
    SKIPPED = "skipped"
    FAILED = "failed"

    def __init__(
        self,
        status: str,
        reason: str = "",
        workout: Optional[dict] = None,
        payload: Optional[dict] = None,
    ) -> None:
        self.status = status
        self.reason = reason
        self.workout = workout
        self.payload = payload

    @property
    def saved(self) -> bool:
        return self.status == self.SAVED

    def __repr__(self) -> str:
        return f"AutoSaveResult(status={self.status!r}, reason={self.reason!r})"


def classify_workout(valid_exercises: List[dict], total_seconds: int) -> str:
    if len(valid_exercises) == 1:
        return "Strength"
    if total_seconds > CARDIO_THRESHOLD_SECONDS:
        return "Cardio"
    return "Strength"


def _positive_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


def is_valid_exercise(entry: Any) -> bool:
    """An entry needs an exercise reference, a positive duration or a name."""
    if not isinstance(entry, dict):
        return False
    name = entry.get("name")
    return (
        _positive_number(entry.get("exerciseId"))
        or _positive_number(entry.get("durationSeconds"))
        or (isinstance(name, str) and name.strip() != "")
    )


def exercise_label(entry: dict) -> str:
    return (
        entry.get("name")
        or entry.get("exerciseName")
        or f"Exercise {entry.get('exerciseId') or 'Unknown'}"
    )


class AutoSaveBridge:
    """Turns a stopped timer into a saved workout."""

    def __init__(
        self,
        client,
        persistence: TimerPersistence,
        notifier=None,
        invalidate: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.client = client
        self.persistence = persistence
        self.notifier = notifier or LoggingNotifier()
        self.invalidate = invalidate

    def resolve_exercise_id(self, exercise_name: str) -> Optional[int]:
        """Find the id of ``exercise_name`` (case-insensitive exact match)."""
        try:
            exercises = self.client.list_exercises()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Failed to look up exercises: %s", exc)
            return None
        target = exercise_name.lower()
        for exercise in exercises or []:
            name = exercise.get("name") if isinstance(exercise, dict) else None
            if name and name.lower() == target:
                return exercise.get("id")
        return None

    @staticmethod
    def minimal_workout(timer: ActiveTimer, exercise_id: int) -> dict:
        return {
            "name": timer.workout_name or DEFAULT_WORKOUT_NAME,
            "notes": "",
            "exercises": [
                {
                    "exerciseId": exercise_id,
                    "name": timer.exercise_name,
                    "durationSeconds": timer.elapsed,
                    "sets": 1,
                    "reps": None,
                    "weight": None,
                }
            ],
        }

    @staticmethod
    def find_draft_exercise(draft: dict, timer: ActiveTimer) -> Optional[int]:
        """Index of the draft exercise the timer belongs to, if any.

        Prefers the draft's own index -> timer id map, then a matching
        correlation id, and only then the exercise label.
        """
        exercises = draft.get("exercises") or []
        timer_ids = draft.get("activeTimerIds") or {}
        if isinstance(timer_ids, dict):
            for index, timer_id in timer_ids.items():
                if timer_id != timer.id:
                    continue
                try:
                    idx = int(index)
                except (TypeError, ValueError):
                    continue
                if 0 <= idx < len(exercises) and isinstance(exercises[idx], dict):
                    return idx
        if timer.correlation_id:
            for idx, entry in enumerate(exercises):
                if isinstance(entry, dict) and entry.get("correlationId") == timer.correlation_id:
                    return idx
        for idx, entry in enumerate(exercises):
            if not isinstance(entry, dict):
                continue
            if timer.exercise_name in (entry.get("name"), entry.get("exerciseName")):
                return idx
        return None

    def save_from_timer(self, timer: ActiveTimer) -> AutoSaveResult:
        logger.info("Attempting to auto-save workout from timer %s", timer.id)
        draft = self.persistence.load_workout_draft()
        from_draft = draft is not None
        if from_draft:
            workout = copy.deepcopy(draft)
        else:
            exercise_id = self.resolve_exercise_id(timer.exercise_name)
            if not exercise_id:
                logger.warning(
                    "Cannot auto-save without a valid exercise id for %r; "
                    "the workout can still be saved manually",
                    timer.exercise_name,
                )
                return AutoSaveResult(
                    AutoSaveResult.SKIPPED, f"unknown exercise {timer.exercise_name!r}"
                )
            workout = self.minimal_workout(timer, exercise_id)

        name = workout.get("name") or workout.get("workoutName")
        if not isinstance(name, str) or not name.strip():
            name = timer.workout_name or DEFAULT_WORKOUT_NAME

        exercises = workout.get("exercises")
        if not isinstance(exercises, list) or not exercises:
            logger.warning("No exercises found, cannot auto-save")
            return AutoSaveResult(AutoSaveResult.SKIPPED, "no exercises")

        if from_draft:
            idx = self.find_draft_exercise(workout, timer)
            if idx is not None:
                exercises[idx]["durationSeconds"] = timer.elapsed

        valid = [entry for entry in exercises if is_valid_exercise(entry)]
        if not valid:
            logger.warning(
                "No valid exercises found, cannot auto-save; entries need an "
                "exercise id, a positive duration or a name"
            )
            return AutoSaveResult(AutoSaveResult.SKIPPED, "no valid exercises")

        duration = sum(
            entry.get("durationSeconds") or 0
            for entry in exercises
            if isinstance(entry, dict)
        )
        payload = {
            "name": name,
            "notes": workout.get("notes") or "",
            "exercises": exercises,
            "duration": duration,
            "category": classify_workout(valid, duration),
            "imageUrl": workout.get("imageUrl"),
        }

        try:
            created = self.client.create_workout(payload)
        except (requests.RequestException, ValueError) as exc:
            logger.error("Failed to save workout: %s", exc)
            self.notifier.failure(
                "Workout Save Failed",
                "Failed to save workout automatically. Please try saving manually.",
            )
            return AutoSaveResult(AutoSaveResult.FAILED, str(exc), payload=payload)
        logger.info("Workout %r saved", name)

        self.persistence.clear_workout_draft()
        self._update_presence(name, valid)
        self._invalidate_queries()
        self.notifier.success("Workout Complete!", f"{name} has been saved successfully.")
        return AutoSaveResult(AutoSaveResult.SAVED, workout=created, payload=payload)

    def _update_presence(self, workout_name: str, exercises: List[dict]) -> None:
        names = [exercise_label(entry) for entry in exercises]
        try:
            self.client.update_community_presence(workout_name, names)
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Failed to update community presence: %s", exc)

    def _invalidate_queries(self) -> None:
        if self.invalidate is None:
            return
        for key in INVALIDATED_QUERIES:
            try:
                self.invalidate(key)
            except Exception:
                logger.exception("Failed to invalidate %s", key)
