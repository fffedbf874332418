import os
import yaml
import keyring

from settings_schema import SettingsSchema, validate_settings


class YamlConfig:
    """Load and save settings to a YAML file with optional encryption."""

    SENSITIVE_KEYS = {
        "api_token",
    }

    def __init__(self, path: str = "settings.yaml") -> None:
        self.path = path
        self.encrypt = os.environ.get("ENCRYPT_SETTINGS") == "1"
        self.service = "fit-timers"

    def load(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if self.encrypt:
            for key in list(data.keys()):
                if key in self.SENSITIVE_KEYS:
                    secret = keyring.get_password(self.service, key)
                    if secret is not None:
                        data[key] = secret
                    else:
                        data.pop(key, None)
        return data

    def save(self, data: dict) -> None:
        out = dict(data)
        if self.encrypt:
            for key in self.SENSITIVE_KEYS:
                if key in out and out[key] is not None:
                    keyring.set_password(self.service, key, str(out[key]))
                    out[key] = True
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(out, f)


ENV_OVERRIDES = {
    "FIT_TIMERS_API_URL": "api_url",
    "FIT_TIMERS_API_TOKEN": "api_token",
    "FIT_TIMERS_DB": "storage_path",
}


def load_settings(path: str = "settings.yaml") -> SettingsSchema:
    """Read ``path``, apply environment overrides and validate."""
    data = YamlConfig(path).load()
    for env, key in ENV_OVERRIDES.items():
        value = os.environ.get(env)
        if value:
            data[key] = value
    return validate_settings(data)
