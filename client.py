import requests
from typing import Optional


class TrackerClient:
    """Simple REST client for the workout tracker API."""

    def __init__(
        self,
        base_url: str = "http://localhost:5000",
        token: Optional[str] = None,
        timeout: float = 10,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def _headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def list_exercises(self) -> list:
        resp = requests.get(
            f"{self.base_url}/api/exercises",
            headers=self._headers(),
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()

    def create_workout(self, payload: dict) -> dict:
        resp = requests.post(
            f"{self.base_url}/api/workouts",
            json=payload,
            headers=self._headers(),
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()

    def update_community_presence(
        self, workout_name: str, exercise_names: list[str]
    ) -> None:
        resp = requests.post(
            f"{self.base_url}/api/community/presence",
            json={"workoutName": workout_name, "exerciseNames": exercise_names},
            headers=self._headers(),
            timeout=self.timeout,
        )
        resp.raise_for_status()
