import json
import os
import sys
import unittest

import requests

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from auto_save import (
    INVALIDATED_QUERIES,
    AutoSaveBridge,
    AutoSaveResult,
    classify_workout,
    is_valid_exercise,
)
from db import MemoryStorage
from events import RecordingNotifier
from timer_models import ActiveTimer
from timer_persistence import TimerPersistence, WORKOUT_SESSION_KEY


class FakeClient:
    def __init__(
        self,
        exercises=None,
        fail_lookup=False,
        fail_create=False,
        fail_presence=False,
    ) -> None:
        self.exercises = exercises or []
        self.fail_lookup = fail_lookup
        self.fail_create = fail_create
        self.fail_presence = fail_presence
        self.lookups = 0
        self.created: list[dict] = []
        self.presence: list[tuple] = []

    def list_exercises(self):
        self.lookups += 1
        if self.fail_lookup:
            raise requests.ConnectionError("offline")
        return list(self.exercises)

    def create_workout(self, payload):
        if self.fail_create:
            raise requests.HTTPError("400 Client Error")
        self.created.append(payload)
        return {"id": 12, **payload}

    def update_community_presence(self, workout_name, exercise_names):
        if self.fail_presence:
            raise requests.ConnectionError("offline")
        self.presence.append((workout_name, exercise_names))


def make_timer(**kwargs) -> ActiveTimer:
    data = {
        "id": "timer-1700000000000-abc123def",
        "workout_name": "Leg Day",
        "exercise_name": "Squat",
        "elapsed": 300,
        "is_running": True,
        "start_time": 1_700_000_000_000,
    }
    data.update(kwargs)
    return ActiveTimer(**data)


class AutoSaveBridgeTest(unittest.TestCase):
    def setUp(self) -> None:
        self.storage = MemoryStorage()
        self.persistence = TimerPersistence(self.storage)
        self.client = FakeClient(exercises=[{"id": 7, "name": "Squat"}])
        self.notifier = RecordingNotifier()
        self.invalidated: list[str] = []
        self.bridge = AutoSaveBridge(
            self.client, self.persistence, self.notifier, self.invalidated.append
        )

    def test_minimal_workout_from_timer(self) -> None:
        result = self.bridge.save_from_timer(make_timer(exercise_name="SQUAT"))
        self.assertTrue(result.saved)
        self.assertEqual(result.workout["id"], 12)
        payload = self.client.created[0]
        self.assertEqual(payload["name"], "Leg Day")
        self.assertEqual(payload["notes"], "")
        self.assertEqual(payload["duration"], 300)
        self.assertEqual(payload["category"], "Strength")
        self.assertIsNone(payload["imageUrl"])
        self.assertEqual(
            payload["exercises"],
            [
                {
                    "exerciseId": 7,
                    "name": "SQUAT",
                    "durationSeconds": 300,
                    "sets": 1,
                    "reps": None,
                    "weight": None,
                }
            ],
        )
        self.assertEqual(self.client.presence, [("Leg Day", ["SQUAT"])])
        self.assertEqual(self.invalidated, list(INVALIDATED_QUERIES))
        self.assertEqual(self.notifier.kinds(), ["success"])

    def test_unknown_exercise_aborts_without_submitting(self) -> None:
        self.client.exercises = [{"id": 1, "name": "Squats"}]
        with self.assertLogs("auto_save", level="WARNING") as logs:
            result = self.bridge.save_from_timer(make_timer())
        self.assertEqual(result.status, AutoSaveResult.SKIPPED)
        self.assertEqual(self.client.created, [])
        self.assertEqual(self.invalidated, [])
        self.assertTrue(any("Cannot auto-save" in line for line in logs.output))

    def test_lookup_failure_aborts(self) -> None:
        self.client.fail_lookup = True
        result = self.bridge.save_from_timer(make_timer())
        self.assertEqual(result.status, AutoSaveResult.SKIPPED)
        self.assertEqual(self.client.created, [])

    def test_draft_is_used_without_lookup(self) -> None:
        self.persistence.save_workout_draft(
            {
                "workoutName": "Legs",
                "notes": "heavy",
                "imageUrl": "https://example.com/legs.jpg",
                "exercises": [
                    {"exerciseId": 7, "name": "Squat", "sets": 5, "durationSeconds": 10},
                    {"exerciseId": 9, "name": "Lunge", "sets": 3, "durationSeconds": 50},
                ],
            }
        )
        result = self.bridge.save_from_timer(make_timer())
        self.assertTrue(result.saved)
        self.assertEqual(self.client.lookups, 0)
        payload = self.client.created[0]
        self.assertEqual(payload["name"], "Legs")
        self.assertEqual(payload["notes"], "heavy")
        self.assertEqual(payload["imageUrl"], "https://example.com/legs.jpg")
        self.assertEqual(payload["exercises"][0]["durationSeconds"], 300)
        self.assertEqual(payload["exercises"][1]["durationSeconds"], 50)
        self.assertEqual(payload["duration"], 350)
        self.assertIsNone(self.storage.get_item(WORKOUT_SESSION_KEY))
        self.assertEqual(self.client.presence, [("Legs", ["Squat", "Lunge"])])

    def test_long_multi_exercise_workout_is_cardio(self) -> None:
        self.persistence.save_workout_draft(
            {
                "name": "Conditioning",
                "exercises": [
                    {"exerciseId": 1, "name": "Rower", "durationSeconds": 0},
                    {"exerciseId": 2, "name": "Bike", "durationSeconds": 700},
                ],
            }
        )
        result = self.bridge.save_from_timer(make_timer(exercise_name="Rower", elapsed=600))
        self.assertTrue(result.saved)
        self.assertEqual(result.payload["duration"], 1300)
        self.assertEqual(result.payload["category"], "Cardio")

    def test_correlation_id_picks_draft_entry(self) -> None:
        self.persistence.save_workout_draft(
            {
                "name": "Legs",
                "exercises": [
                    {"exerciseId": 7, "name": "Squat", "correlationId": "a"},
                    {"exerciseId": 7, "name": "Squat", "correlationId": "b"},
                ],
            }
        )
        result = self.bridge.save_from_timer(make_timer(correlation_id="b", elapsed=42))
        exercises = result.payload["exercises"]
        self.assertNotIn("durationSeconds", exercises[0])
        self.assertEqual(exercises[1]["durationSeconds"], 42)

    def test_timer_id_map_pointing_at_non_dict_entry_is_ignored(self) -> None:
        timer = make_timer(elapsed=80)
        self.persistence.save_workout_draft(
            {
                "name": "Legs",
                "exercises": [None, {"exerciseId": 7, "name": "Squat"}],
                "activeTimerIds": {"0": timer.id},
            }
        )
        result = self.bridge.save_from_timer(timer)
        self.assertTrue(result.saved)
        self.assertIsNone(result.payload["exercises"][0])
        self.assertEqual(result.payload["exercises"][1]["durationSeconds"], 80)

    def test_draft_without_name_falls_back_to_timer(self) -> None:
        self.persistence.save_workout_draft(
            {"name": "  ", "exercises": [{"exerciseId": 7, "name": "Squat"}]}
        )
        result = self.bridge.save_from_timer(make_timer(workout_name="Evening Legs"))
        self.assertEqual(result.payload["name"], "Evening Legs")

    def test_draft_without_exercises_is_skipped(self) -> None:
        self.persistence.save_workout_draft({"name": "Legs", "exercises": []})
        result = self.bridge.save_from_timer(make_timer())
        self.assertEqual(result.status, AutoSaveResult.SKIPPED)
        self.assertEqual(self.client.created, [])
        self.assertIsNotNone(self.storage.get_item(WORKOUT_SESSION_KEY))

    def test_draft_with_only_invalid_exercises_is_skipped(self) -> None:
        self.persistence.save_workout_draft(
            {"name": "Legs", "exercises": [{"exerciseId": 0, "durationSeconds": 0}]}
        )
        result = self.bridge.save_from_timer(make_timer())
        self.assertEqual(result.reason, "no valid exercises")
        self.assertEqual(self.client.created, [])

    def test_submission_failure_keeps_draft(self) -> None:
        self.client.fail_create = True
        self.persistence.save_workout_draft(
            {"name": "Legs", "exercises": [{"exerciseId": 7, "name": "Squat"}]}
        )
        before = self.storage.get_item(WORKOUT_SESSION_KEY)
        result = self.bridge.save_from_timer(make_timer())
        self.assertEqual(result.status, AutoSaveResult.FAILED)
        self.assertEqual(self.storage.get_item(WORKOUT_SESSION_KEY), before)
        self.assertEqual(self.client.presence, [])
        self.assertEqual(self.invalidated, [])
        self.assertEqual(self.notifier.kinds(), ["failure"])

    def test_presence_failure_does_not_undo_save(self) -> None:
        self.client.fail_presence = True
        self.persistence.save_workout_draft(
            {"name": "Legs", "exercises": [{"exerciseId": 7, "name": "Squat"}]}
        )
        result = self.bridge.save_from_timer(make_timer())
        self.assertTrue(result.saved)
        self.assertIsNone(self.storage.get_item(WORKOUT_SESSION_KEY))
        self.assertEqual(self.invalidated, list(INVALIDATED_QUERIES))

    def test_each_invalidation_is_independent(self) -> None:
        seen = []

        def invalidate(key: str) -> None:
            seen.append(key)
            if key == "/api/workouts":
                raise RuntimeError("cache gone")

        bridge = AutoSaveBridge(self.client, self.persistence, self.notifier, invalidate)
        result = bridge.save_from_timer(make_timer())
        self.assertTrue(result.saved)
        self.assertEqual(seen, list(INVALIDATED_QUERIES))
        self.assertEqual(self.notifier.kinds(), ["success"])

    def test_presence_names_fall_back_to_exercise_id(self) -> None:
        self.persistence.save_workout_draft(
            {"name": "Legs", "exercises": [{"exerciseId": 7, "durationSeconds": 30}]}
        )
        self.bridge.save_from_timer(make_timer(exercise_name="Hack Squat"))
        self.assertEqual(self.client.presence, [("Legs", ["Exercise 7"])])

    def test_malformed_draft_falls_back_to_timer(self) -> None:
        self.storage.set_item(WORKOUT_SESSION_KEY, "{not json")
        result = self.bridge.save_from_timer(make_timer())
        self.assertTrue(result.saved)
        self.assertEqual(self.client.lookups, 1)
        self.assertEqual(json.loads(json.dumps(result.payload))["name"], "Leg Day")


class HelpersTest(unittest.TestCase):
    def test_classify_workout(self) -> None:
        self.assertEqual(classify_workout([{}], 5000), "Strength")
        self.assertEqual(classify_workout([{}, {}], 1201), "Cardio")
        self.assertEqual(classify_workout([{}, {}], 1200), "Strength")

    def test_is_valid_exercise(self) -> None:
        self.assertTrue(is_valid_exercise({"exerciseId": 3}))
        self.assertTrue(is_valid_exercise({"durationSeconds": 10}))
        self.assertTrue(is_valid_exercise({"name": "Squat"}))
        self.assertFalse(is_valid_exercise({"exerciseId": 0, "name": " "}))
        self.assertFalse(is_valid_exercise("Squat"))


if __name__ == "__main__":
    unittest.main()
