# src/taskweave/errors.py

from __future__ import annotations

from typing import Any


class TaskweaveError(Exception):
    """Base class for errors raised by the task core."""


class UnknownTaskError(TaskweaveError, KeyError):
    """A task id is not present in the canonical collection."""

    def __init__(self, task_id: Any) -> None:
        super().__init__(task_id)
        self.task_id = task_id

    def __str__(self) -> str:
        return f"unknown task: {self.task_id}"


class PersistenceError(TaskweaveError, RuntimeError):
    """The persistence backend could not complete a request."""


class TaskNotFoundError(PersistenceError):
    """The persistence backend has no task with the requested id."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"task not found: {task_id}")
        self.task_id = task_id


class WriteFailedError(TaskweaveError):
    """
    A scheduled write failed.

    Delivered once to the caller that initiated the write. The optimistic local
    change stays in the canonical collection; reconciling it is up to the caller.
    """

    def __init__(self, task_id: Any, operation: str, cause: BaseException) -> None:
        super().__init__(f"{operation} failed for {task_id}: {cause}")
        self.task_id = task_id
        self.operation = operation
        self.cause = cause
