# src/taskweave/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the task core.

The core depends on Protocols instead of concrete implementations.
This keeps the persistence backend swappable and makes testing easier.
"""

from datetime import date
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from ..errors import WriteFailedError
    from ..tasks.task_models import Task, TaskId

TaskPayload = dict[str, Any]
# JSON-like request body: see task_models.task_to_payload().


class PersistenceClient(Protocol):
    """
    Remote task store (network CRUD endpoint).

    Every call is a coroutine. Cancelling the awaiting asyncio task aborts the
    request; the scheduler relies on that for cancel-then-replace.
    """

    async def create_task(self, payload: TaskPayload) -> Task: ...

    async def update_task(self, task_id: str, payload: TaskPayload) -> Task:
        """Partial update: fields missing from payload stay unchanged server-side."""
        ...

    async def delete_task(self, task_id: str) -> None: ...

    async def list_tasks(self, owner_id: str, start: date, end: date) -> list[Task]:
        """Tasks scheduled in [start, end] plus every recurrence template of the owner."""
        ...


class IdentityReferenceHolder(Protocol):
    """Anything that keeps task ids outside the store (selection, expansion, pending writes)."""

    def rename_identity(self, old_id: TaskId, new_id: TaskId) -> None: ...


class ChangeListener(Protocol):
    """View-side callback: the canonical collection changed, re-render."""

    def __call__(self) -> None: ...


class ErrorHandler(Protocol):
    """View-side callback for persistence failures it initiated."""

    def __call__(self, error: WriteFailedError) -> None: ...
