"""
Process configuration loaded from environment variables.

Built once in ``main`` and passed to the service constructors so tests can
construct a ``Settings`` with explicit values instead of patching the
environment.
"""

import os
from enum import Enum
from typing import Optional

from tour_backend.errors import InvalidInput


class AdmissionPolicy(str, Enum):
    """How StartTour treats a robot (or user) that already has a live tour."""

    REPLACE = "replace"  # cancel the running tour and proceed
    STRICT = "strict"  # reject with Conflict


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise InvalidInput(f"{name} must be numeric, got {raw!r}")


class Settings:
    """Application settings."""

    def __init__(self, **overrides):
        self.port = int(_env_number("PORT", 8000))
        self.address = os.getenv("ADDRESS", "0.0.0.0")

        self.mongodb_url: Optional[str] = os.getenv("MONGODB_URL")
        self.mongodb_database = os.getenv("MONGODB_DATABASE", "tour_db")

        self.rosbridge_url = os.getenv("ROSBRIDGE_URL", "ws://turtlebot-NUC.local:9090")
        self.robot_name = os.getenv("ROBOT_NAME", "TurtleBot")
        self.reconnect_interval = _env_number("RECONNECT_INTERVAL_SECONDS", 30)

        policy = os.getenv("ADMISSION_POLICY", AdmissionPolicy.REPLACE.value)
        try:
            self.admission_policy = AdmissionPolicy(policy.strip().lower())
        except ValueError:
            raise InvalidInput(f"ADMISSION_POLICY must be 'replace' or 'strict', got {policy!r}")
        self.cancel_on_abandon = _env_bool("CANCEL_ON_ABANDON", False)
        self.stale_tour_minutes = _env_number("STALE_TOUR_MINUTES", 0)

        self.gemini_api_key: Optional[str] = os.getenv("GEMINI_API_KEY")
        self.gemini_model = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
        self.narration_prompt_path: Optional[str] = os.getenv("NARRATION_PROMPT_PATH")
        self.narration_cache_size = int(_env_number("NARRATION_CACHE_SIZE", 512))
        self.narration_timeout = _env_number("NARRATION_TIMEOUT_SECONDS", 20)

        self.notifications_enabled = _env_bool("NOTIFICATIONS_ENABLED", True)

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise InvalidInput(f"Unknown setting: {key}")
            setattr(self, key, value)

        if self.reconnect_interval <= 0:
            raise InvalidInput("RECONNECT_INTERVAL_SECONDS must be positive")
        if self.narration_cache_size < 1:
            raise InvalidInput("NARRATION_CACHE_SIZE must be at least 1")
