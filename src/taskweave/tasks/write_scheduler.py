# src/taskweave/tasks/write_scheduler.py

from __future__ import annotations

"""
Write scheduler.

Owns every call to the persistence client:
- debounces edits per task id,
- cancels the previous write for an id before starting a new one,
- keeps the set of pending writes (timers and in-flight requests),
- folds server responses back into the TaskStore.

At most one write per task id is in flight at any time. Writes for different ids
are independent and may finish in any order.

Cancellation (a newer write for the same id replaced this one) is silent and never
touches the store. Failures are wrapped in WriteFailedError and handed once to the
caller's on_error (or the scheduler default); they are not retried and the local
edit is not rolled back.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any

from ..core.ports import ErrorHandler, PersistenceClient, TaskPayload
from ..errors import UnknownTaskError, WriteFailedError
from .task_models import EDITABLE_FIELDS, PersistedId, Task, TaskId, TemporaryId, task_to_payload
from .task_store import TaskStore

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.5

PayloadBuilder = Callable[[Task], TaskPayload]
CreatedCallback = Callable[[Task, Task], Task | None]
# (snapshot the payload was built from, server response) -> task now in the store


class WriteMode(StrEnum):
    DEBOUNCED = "debounced"
    IMMEDIATE = "immediate"


class WriteOp(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(slots=True, eq=False)
class PendingWrite:
    """Bookkeeping for one scheduled or in-flight write."""

    task_id: TaskId
    operation: WriteOp
    builder: PayloadBuilder | None = None
    handle: asyncio.Task[Any] | None = None
    in_flight: bool = False


@dataclass(frozen=True, slots=True)
class FieldsPayload:
    """Payload builder sending only the named fields, read at fire time."""

    names: tuple[str, ...]

    def __call__(self, task: Task) -> TaskPayload:
        return task_to_payload(task, self.names)

    def merged(self, newer: PayloadBuilder) -> PayloadBuilder:
        # A replaced partial update still owes its fields to the server.
        if isinstance(newer, FieldsPayload):
            return FieldsPayload(tuple(dict.fromkeys(self.names + newer.names)))
        return newer


def fields_payload(*names: str) -> FieldsPayload:
    return FieldsPayload(tuple(names))


def reconcile_server_echo(
    server: Task,
    snapshot: Task,
    current: Task,
    sent: Iterable[str] | None = None,
) -> Task:
    """
    Merge a server response into the local task.

    Server-computed fields (owner, timestamps) come from the server. An editable
    field takes the server's value only if the request carried it (`sent`, every
    editable field when None) and it has not changed locally since `snapshot`,
    the task the request was built from. Anything else keeps the local value, so
    an unsent local edit (for example one whose own write failed) survives.
    """
    carried = set(EDITABLE_FIELDS) if sent is None else set(sent)
    values: dict[str, Any] = {}
    for name in EDITABLE_FIELDS:
        local = getattr(current, name)
        if name in carried and local == getattr(snapshot, name):
            values[name] = getattr(server, name)
        else:
            values[name] = local
    return replace(server, id=current.id, **values)


class WriteScheduler:
    def __init__(
        self,
        store: TaskStore,
        client: PersistenceClient,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        on_error: ErrorHandler | None = None,
    ) -> None:
        self._store = store
        self._client = client
        self._debounce_s = max(0.0, float(debounce_seconds))
        self._on_error = on_error
        self._pending: dict[TaskId, PendingWrite] = {}
        # Cancelled writes that may still be unwinding; the next write for the id waits for them.
        self._unwinding: dict[TaskId, PendingWrite] = {}

        store.add_removal_hook(self.cancel)
        store.add_reference_holder(self)

    # ---- pending set ----

    @property
    def error_handler(self) -> ErrorHandler | None:
        """Handler used for failures whose caller did not pass on_error."""
        return self._on_error

    @property
    def debounce_seconds(self) -> float:
        return self._debounce_s

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def pending_ids(self) -> list[TaskId]:
        return list(self._pending)

    def is_pending(self, task_id: TaskId) -> bool:
        return task_id in self._pending

    def pending_operation(self, task_id: TaskId) -> WriteOp | None:
        entry = self._pending.get(task_id)
        return entry.operation if entry is not None else None

    # ---- scheduling ----

    def schedule(
        self,
        task_id: TaskId,
        payload_builder: PayloadBuilder,
        mode: WriteMode = WriteMode.DEBOUNCED,
        *,
        on_error: ErrorHandler | None = None,
    ) -> asyncio.Task[Task | None] | None:
        """
        Persist the current state of a task.

        Replaces any pending write for the same id. The payload is built when the
        write fires, from the task as it is in the store at that moment. When both
        the replaced and the new write are fields_payload() builders, the new one
        sends the fields of both.

        Drafts are not updated remotely: their edits stay local until the draft is
        committed (see DraftLifecycle). Returns None for them.
        """
        match task_id:
            case TemporaryId():
                logger.debug("Edit on draft %s kept local", task_id)
                return None
            case PersistedId():
                pass

        if task_id not in self._store:
            raise UnknownTaskError(task_id)

        previous = self._pending.get(task_id)
        if (
            previous is not None
            and previous.operation == WriteOp.UPDATE
            and isinstance(previous.builder, FieldsPayload)
        ):
            payload_builder = previous.builder.merged(payload_builder)

        delay = self._debounce_s if mode == WriteMode.DEBOUNCED else 0.0

        async def _work(entry: PendingWrite) -> Task | None:
            return await self._run_update(entry, payload_builder, on_error)

        return self._start(task_id, WriteOp.UPDATE, _work, delay, builder=payload_builder)

    def create(
        self,
        temp_id: TemporaryId,
        payload_builder: PayloadBuilder,
        on_created: CreatedCallback,
        *,
        on_error: ErrorHandler | None = None,
    ) -> asyncio.Task[Task | None]:
        """
        Create a draft remotely on the next loop tick.

        on_created runs synchronously with the response, right after the write
        leaves the pending set.
        """
        if not isinstance(temp_id, TemporaryId):
            raise TypeError(f"create expects a temporary id, got {temp_id!r}")
        if temp_id not in self._store:
            raise UnknownTaskError(temp_id)

        async def _work(entry: PendingWrite) -> Task | None:
            return await self._run_create(entry, payload_builder, on_created, on_error)

        return self._start(temp_id, WriteOp.CREATE, _work, 0.0)

    def delete(
        self,
        task_id: TaskId,
        *,
        on_error: ErrorHandler | None = None,
    ) -> asyncio.Task[None] | None:
        """
        Remove a task locally, then remotely.

        The store removal cancels any pending write for the id before the delete
        call is issued. Drafts never reached the remote store, so only the local
        removal happens for them.
        """
        removed = self._store.remove(task_id)
        if removed is None:
            logger.debug("delete: %s not in store", task_id)
            return None

        if not isinstance(task_id, PersistedId):
            return None

        async def _work(entry: PendingWrite) -> None:
            await self._run_delete(entry, on_error)

        return self._start(task_id, WriteOp.DELETE, _work, 0.0)

    def cancel(self, task_id: TaskId) -> bool:
        """Drop the pending write for an id. Returns True if there was one."""
        entry = self._pending.pop(task_id, None)
        if entry is None:
            return False
        self._abort(entry)
        self._unwinding[task_id] = entry
        logger.debug("Cancelled %s write for %s in_flight=%s", entry.operation.value, task_id, entry.in_flight)
        return True

    async def flush(self) -> None:
        """Wait until no write is pending (including writes started meanwhile)."""
        while self._pending:
            handles = [e.handle for e in self._pending.values() if e.handle is not None]
            if not handles:
                return
            await asyncio.wait(handles)

    async def aclose(self) -> None:
        """Cancel every pending write and wait for them to unwind."""
        entries = list(self._pending.values())
        self._pending.clear()
        for entry in entries:
            self._abort(entry)
        handles = [e.handle for e in entries if e.handle is not None]
        if handles:
            await asyncio.wait(handles)
        if entries:
            logger.info("WriteScheduler closed, cancelled %d pending writes", len(entries))

    # ---- identity swap ----

    def rename_identity(self, old_id: TaskId, new_id: TaskId) -> None:
        unwinding = self._unwinding.pop(old_id, None)
        if unwinding is not None:
            self._unwinding[new_id] = unwinding
        entry = self._pending.pop(old_id, None)
        if entry is None:
            return
        entry.task_id = new_id
        self._pending[new_id] = entry

    # ---- internals ----

    def _start(
        self,
        task_id: TaskId,
        operation: WriteOp,
        work: Callable[[PendingWrite], Awaitable[Any]],
        delay: float,
        *,
        builder: PayloadBuilder | None = None,
    ) -> asyncio.Task[Any]:
        previous = self._pending.pop(task_id, None) or self._unwinding.pop(task_id, None)
        if previous is not None:
            self._abort(previous)
            logger.debug(
                "Superseding %s write for %s with %s", previous.operation.value, task_id, operation.value
            )

        entry = PendingWrite(task_id=task_id, operation=operation, builder=builder)
        entry.handle = asyncio.get_running_loop().create_task(
            self._run(entry, previous, work, delay),
            name=f"write-{operation.value}-{task_id}",
        )
        # A write cancelled before its first step never reaches the finally block in _run.
        entry.handle.add_done_callback(lambda _t, e=entry: self._release(e))
        self._pending[task_id] = entry
        return entry.handle

    async def _run(
        self,
        entry: PendingWrite,
        previous: PendingWrite | None,
        work: Callable[[PendingWrite], Awaitable[Any]],
        delay: float,
    ) -> Any:
        try:
            # The replaced write must finish unwinding before this one can go out.
            if previous is not None and previous.handle is not None and not previous.handle.done():
                await asyncio.wait([previous.handle])
            await asyncio.sleep(delay)
            entry.in_flight = True
            return await work(entry)
        except asyncio.CancelledError:
            logger.debug("%s write for %s cancelled", entry.operation.value, entry.task_id)
            raise
        finally:
            entry.in_flight = False
            self._release(entry)

    def _release(self, entry: PendingWrite) -> None:
        for key, value in list(self._pending.items()):
            if value is entry:
                del self._pending[key]
        for key, value in list(self._unwinding.items()):
            if value is entry:
                del self._unwinding[key]

    @staticmethod
    def _abort(entry: PendingWrite) -> None:
        handle = entry.handle
        if handle is None or handle.done() or handle is asyncio.current_task():
            return
        handle.cancel()

    def _fail(self, entry: PendingWrite, exc: Exception, on_error: ErrorHandler | None) -> None:
        error = WriteFailedError(entry.task_id, entry.operation.value, exc)
        logger.warning("%s", error, exc_info=exc)

        handler = on_error or self._on_error
        if handler is None:
            logger.error("No error handler for failed %s write on %s", entry.operation.value, entry.task_id)
            return
        try:
            handler(error)
        except Exception:
            logger.exception("on_error handler failed task_id=%s", entry.task_id)

    async def _run_update(
        self,
        entry: PendingWrite,
        payload_builder: PayloadBuilder,
        on_error: ErrorHandler | None,
    ) -> Task | None:
        snapshot = self._store.get(entry.task_id)
        if snapshot is None or not isinstance(entry.task_id, PersistedId):
            return None

        payload = payload_builder(snapshot)
        try:
            response = await self._client.update_task(entry.task_id.value, payload)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._fail(entry, exc, on_error)
            return None

        current = self._store.get(entry.task_id)
        if current is None:
            logger.info("Task %s was removed while its update was in flight; dropping response", entry.task_id)
            return None

        merged = reconcile_server_echo(response, snapshot, current, sent=payload.keys())
        self._store.upsert([merged])
        logger.debug("Update confirmed for %s (%d fields sent)", entry.task_id, len(payload))
        return merged

    async def _run_create(
        self,
        entry: PendingWrite,
        payload_builder: PayloadBuilder,
        on_created: CreatedCallback,
        on_error: ErrorHandler | None,
    ) -> Task | None:
        snapshot = self._store.get(entry.task_id)
        if snapshot is None:
            return None

        payload = payload_builder(snapshot)
        try:
            response = await self._client.create_task(payload)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._fail(entry, exc, on_error)
            return None

        self._release(entry)
        logger.info("Create confirmed %s -> %s", entry.task_id, response.id)
        return on_created(snapshot, response)

    async def _run_delete(self, entry: PendingWrite, on_error: ErrorHandler | None) -> None:
        if not isinstance(entry.task_id, PersistedId):
            return
        try:
            await self._client.delete_task(entry.task_id.value)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._fail(entry, exc, on_error)
            return
        logger.debug("Delete confirmed for %s", entry.task_id)

