from typing import Optional

from pydantic import BaseModel, Field, ValidationError


class SettingsSchema(BaseModel):
    api_url: str = "http://localhost:5000"
    api_token: Optional[str] = None
    storage_path: str = "timers.db"
    rest_timer_seconds: int = Field(default=90, gt=0)
    tick_interval: float = Field(default=1.0, gt=0)
    log_level: str = "INFO"


def validate_settings(data: dict) -> SettingsSchema:
    try:
        return SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
