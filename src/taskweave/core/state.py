# src/taskweave/core/state.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..core.ports import PersistenceClient
from ..errors import WriteFailedError
from ..tasks.drafts import DraftLifecycle
from ..tasks.task_store import TaskStore
from ..tasks.write_scheduler import WriteScheduler
from ..views.task_view import TaskView


@dataclass
class AppState:
    """Everything one session shares: the canonical store and the components around it."""

    # Store Settings on the state for easy access in other modules later.
    settings: Any

    backend: PersistenceClient
    store: TaskStore
    scheduler: WriteScheduler
    drafts: DraftLifecycle

    owner_id: str
    views: dict[str, TaskView] = field(default_factory=dict)

    # Failures nobody else handled; shown by the console and cleared after display.
    errors: list[WriteFailedError] = field(default_factory=list)

    def report_error(self, error: WriteFailedError) -> None:
        self.errors.append(error)

    def take_errors(self) -> list[WriteFailedError]:
        out = list(self.errors)
        self.errors.clear()
        return out
