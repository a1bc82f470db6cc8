"""
Environment configuration for the research tracker.

Values come from the process environment, with a local ``.env`` file
loaded first. Unknown or malformed values fall back to defaults with a
warning rather than stopping startup.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

logger = logging.getLogger("Settings")

BACKENDS = ("json", "mongo", "memory")


class TrackerSettings(BaseModel):
    state_backend: str = "json"
    state_path: str = "data/research_state.json"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "points_tracker"
    player_webhook_url: Optional[str] = None
    gm_webhook_url: Optional[str] = None
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @field_validator("state_backend", mode="before")
    @classmethod
    def validate_backend(cls, v):
        value = str(v or "").strip().lower()
        if value not in BACKENDS:
            logger.warning(f"Unknown TRACKER_STATE_BACKEND '{v}', using 'json'.")
            return "json"
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v):
        value = str(v or "").strip().upper()
        return value if isinstance(logging.getLevelName(value), int) else "INFO"

    @field_validator("player_webhook_url", "gm_webhook_url", "log_file", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if v is None:
            return None
        return str(v).strip() or None

    @property
    def webhooks_configured(self) -> bool:
        return bool(self.player_webhook_url and self.gm_webhook_url)

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "TrackerSettings":
        """Read settings from the environment (and ``.env`` unless disabled)."""
        if dotenv:
            load_dotenv()
        values = {
            "state_backend": os.getenv("TRACKER_STATE_BACKEND"),
            "state_path": os.getenv("TRACKER_STATE_PATH"),
            "mongodb_uri": os.getenv("MONGODB_URI"),
            "mongodb_db": os.getenv("TRACKER_MONGODB_DB"),
            "player_webhook_url": os.getenv("PLAYER_WEBHOOK_URL"),
            "gm_webhook_url": os.getenv("GM_WEBHOOK_URL"),
            "log_level": os.getenv("TRACKER_LOG_LEVEL"),
            "log_file": os.getenv("TRACKER_LOG_FILE"),
        }
        return cls(**{key: value for key, value in values.items() if value is not None})
