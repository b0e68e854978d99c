# tests/test_config.py

from __future__ import annotations

from pathlib import Path

import pytest

from taskweave.config import Settings


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "APP_NAME",
        "LOG_LEVEL",
        "OWNER_ID",
        "CONSOLE_ENABLED",
        "DEBOUNCE_MS",
        "LOAD_DAYS_BACK",
        "LOAD_DAYS_AHEAD",
        "PAGE_SIZE",
        "DATA_DIR",
        "TASKS_DB_PATH",
    ):
        monkeypatch.delenv(f"TASKWEAVE_{name}", raising=False)

    s = Settings.from_env()

    assert s.app_name == "taskweave"
    assert s.owner_id == "local"
    assert s.console_enabled is True
    assert s.debounce_ms == 500
    assert s.debounce_seconds == 0.5
    assert (s.load_days_back, s.load_days_ahead) == (7, 30)
    assert s.page_size == 20
    assert s.tasks_db_path == s.data_dir / "tasks.sqlite3"


def test_env_overrides_and_bad_values(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TASKWEAVE_OWNER_ID", "alice")
    monkeypatch.setenv("TASKWEAVE_CONSOLE_ENABLED", "no")
    monkeypatch.setenv("TASKWEAVE_DEBOUNCE_MS", "250")
    monkeypatch.setenv("TASKWEAVE_PAGE_SIZE", "not-a-number")
    monkeypatch.setenv("TASKWEAVE_LOAD_DAYS_BACK", "-3")
    monkeypatch.setenv("TASKWEAVE_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("TASKWEAVE_TASKS_DB_PATH", raising=False)

    s = Settings.from_env()

    assert s.owner_id == "alice"
    assert s.console_enabled is False
    assert s.debounce_seconds == 0.25
    assert s.page_size == 20
    assert s.load_days_back == 0
    assert s.tasks_db_path == tmp_path / "tasks.sqlite3"
