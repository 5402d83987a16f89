"""Configuration for the budget tracker.

Values come from environment variables, optionally loaded from a ``.env``
file in the working directory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

_PROJECT_ROOT = Path(__file__).parent.parent.resolve()

DEFAULT_DATA_DIR = _PROJECT_ROOT / "data"
DEFAULT_STORAGE_KEY = "budgetTrackerData"
MAX_RECORD_BYTES = 5 * 1024 * 1024

MODE_LOCAL = "local"
MODE_CLOUD = "cloud"


@dataclass(frozen=True)
class Settings:
    data_dir: Path = DEFAULT_DATA_DIR
    storage_key: str = DEFAULT_STORAGE_KEY
    mode: str = MODE_LOCAL
    firebase_api_key: Optional[str] = None
    firebase_project_id: Optional[str] = None
    poll_seconds: float = 5.0
    http_timeout: float = 10.0
    log_level: str = "INFO"
    max_record_bytes: int = MAX_RECORD_BYTES

    @property
    def cloud_enabled(self) -> bool:
        return (
            self.mode == MODE_CLOUD
            and bool(self.firebase_api_key)
            and bool(self.firebase_project_id)
        )


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def load_settings(env_file: Optional[Path] = None) -> Settings:
    load_dotenv(env_file)

    mode = os.getenv("BUDGET_TRACKER_MODE", MODE_LOCAL).strip().lower()
    if mode not in (MODE_LOCAL, MODE_CLOUD):
        mode = MODE_LOCAL

    return Settings(
        data_dir=Path(os.getenv("BUDGET_TRACKER_DATA_DIR", DEFAULT_DATA_DIR)),
        storage_key=os.getenv("BUDGET_TRACKER_STORAGE_KEY", DEFAULT_STORAGE_KEY),
        mode=mode,
        firebase_api_key=os.getenv("FIREBASE_API_KEY") or None,
        firebase_project_id=os.getenv("FIREBASE_PROJECT_ID") or None,
        poll_seconds=_float_env("BUDGET_TRACKER_POLL_SECONDS", 5.0),
        http_timeout=_float_env("BUDGET_TRACKER_HTTP_TIMEOUT", 10.0),
        log_level=os.getenv("BUDGET_TRACKER_LOG_LEVEL", "INFO").upper(),
    )


def ensure_data_directory(settings: Settings) -> Path:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings.data_dir
