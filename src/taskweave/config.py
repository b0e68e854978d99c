# src/taskweave/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- Nothing required at import time; every value has a local default.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

ENV_PREFIX = "TASKWEAVE"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv_if_available() -> None:
    """Load .env locally if python-dotenv is installed. Safe no-op otherwise."""
    try:
        from dotenv import load_dotenv  # type: ignore
    except Exception:
        return
    load_dotenv(override=False)


_load_dotenv_if_available()


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Session ----
    owner_id: str
    console_enabled: bool

    # ---- Writes ----
    debounce_ms: int

    # ---- Initial load window (relative to today) ----
    load_days_back: int
    load_days_ahead: int

    # ---- Views ----
    page_size: int

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path

    @property
    def debounce_seconds(self) -> float:
        return max(0, self.debounce_ms) / 1000.0

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "taskweave") or "taskweave"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        owner_id = _env(_k("OWNER_ID"), "local").strip() or "local"
        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        debounce_ms = max(0, _env_int(_k("DEBOUNCE_MS"), 500))

        load_days_back = max(0, _env_int(_k("LOAD_DAYS_BACK"), 7))
        load_days_ahead = max(0, _env_int(_k("LOAD_DAYS_AHEAD"), 30))

        page_size = max(1, _env_int(_k("PAGE_SIZE"), 20))

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskweave"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")

        return Settings(
            app_name=app_name,
            log_level=log_level,
            owner_id=owner_id,
            console_enabled=console_enabled,
            debounce_ms=debounce_ms,
            load_days_back=load_days_back,
            load_days_ahead=load_days_ahead,
            page_size=page_size,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
