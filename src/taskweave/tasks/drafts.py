# src/taskweave/tasks/drafts.py

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import replace
from typing import Any

from ..core.ports import ErrorHandler, TaskPayload
from ..errors import WriteFailedError
from .recurrence import is_valid_rule
from .task_models import (
    DraftDefaults,
    Task,
    TaskId,
    TemporaryId,
    apply_changes,
    changed_fields,
    task_to_payload,
)
from .task_store import TaskStore
from .write_scheduler import WriteMode, WriteScheduler, fields_payload, reconcile_server_echo

logger = logging.getLogger(__name__)

_DEFAULT_KEYS = ("goal_id", "area_id", "scheduled_date", "importance", "urgency")


class DraftLifecycle:
    """
    Unsaved tasks: creation, commit (draft -> persisted) and discard.

    A draft lives in the TaskStore under a TemporaryId so the view that asked for it
    can show and edit it. Committing creates it remotely and swaps the temporary id
    for the server id everywhere at once. Edits made while the create is in flight
    stay in the store and go out afterwards as one update.
    """

    def __init__(self, store: TaskStore, scheduler: WriteScheduler, *, owner_id: str | None = None) -> None:
        self._store = store
        self._scheduler = scheduler
        self._owner_id = owner_id
        self._committing: set[TaskId] = set()

        store.add_removal_hook(self._committing.discard)

    def is_committing(self, task_id: TaskId) -> bool:
        return task_id in self._committing

    def begin_draft(self, prefill: DraftDefaults | Mapping[str, Any] | None = None) -> Task:
        """Create an empty-titled draft with inherited defaults and add it to the store."""
        if prefill is None:
            defaults = DraftDefaults()
        elif isinstance(prefill, DraftDefaults):
            defaults = prefill
        else:
            values = dict(prefill)
            known = {k: values.pop(k) for k in _DEFAULT_KEYS if k in values}
            defaults = DraftDefaults(**known, extra=values)

        draft = Task(
            id=TemporaryId.new(),
            title="",
            scheduled_date=defaults.scheduled_date,
            importance=defaults.importance,
            urgency=defaults.urgency,
            goal_id=defaults.goal_id,
            area_id=defaults.area_id,
            owner_id=self._owner_id,
            created_at=time.time(),
        )
        if defaults.extra:
            draft = apply_changes(draft, defaults.extra)

        self._store.upsert([draft])
        logger.debug("Draft started %s goal=%s area=%s", draft.id, draft.goal_id, draft.area_id)
        return draft

    def commit_or_discard(
        self,
        task_id: TaskId,
        final_title: str | None,
        *,
        on_error: ErrorHandler | None = None,
    ) -> asyncio.Task[Task | None] | None:
        """
        Finish editing a draft.

        A blank title discards the draft without any remote call. Otherwise the
        draft is created remotely and, on success, takes the server identity.

        Safe to call twice (blur and close both fire): anything that is not a
        draft anymore, or a draft whose create is already running, is left alone.
        """
        task = self._store.get(task_id)
        if task is None or not isinstance(task_id, TemporaryId):
            logger.debug("commit_or_discard: %s is not a draft, nothing to do", task_id)
            return None
        if task_id in self._committing:
            logger.debug("commit_or_discard: %s already committing", task_id)
            return None

        title = (final_title or "").strip()
        if not title:
            self._store.remove(task_id)
            logger.info("Discarded empty draft %s", task_id)
            return None

        if task.title != title:
            self._store.upsert([replace(task, title=title)])

        self._committing.add(task_id)

        def _failed(error: WriteFailedError) -> None:
            self._committing.discard(task_id)
            handler = on_error or self._scheduler.error_handler
            if handler is not None:
                handler(error)

        def _created(snapshot: Task, response: Task) -> Task | None:
            return self._on_created(snapshot, response, on_error)

        logger.info("Committing draft %s title=%r", task_id, title)
        return self._scheduler.create(task_id, self._create_payload, _created, on_error=_failed)

    def settle_recurrence(
        self,
        task_id: TaskId,
        *,
        on_error: ErrorHandler | None = None,
    ) -> asyncio.Task[Task | None] | None:
        """
        Called when a view leaves edit mode for a task.

        A weekly/monthly rule with no days selected is not a recurrence: it is
        reset to None in the store right away and the reset is persisted
        immediately (drafts only change locally).
        """
        task = self._store.get(task_id)
        if task is None or task.recurrence is None or is_valid_rule(task.recurrence):
            return None

        logger.info("Task %s has an incomplete %s rule; disabling recurrence", task_id, task.recurrence.frequency)
        self._store.upsert([replace(task, recurrence=None)])
        return self._scheduler.schedule(task_id, fields_payload("recurrence"), WriteMode.IMMEDIATE, on_error=on_error)

    # ---- internals ----

    def _create_payload(self, task: Task) -> TaskPayload:
        payload = task_to_payload(task)
        payload["title"] = task.title.strip()
        if self._owner_id is not None:
            payload["owner_id"] = self._owner_id
        return payload

    def _on_created(self, snapshot: Task, response: Task, on_error: ErrorHandler | None) -> Task | None:
        temp_id = snapshot.id
        self._committing.discard(temp_id)

        current = self._store.get(temp_id)
        if current is None:
            # Removal cancels the create, so this only happens if the removal raced the response.
            logger.warning("Draft %s vanished before its create returned (server id %s)", temp_id, response.id)
            return None

        merged = reconcile_server_echo(response, snapshot, current)
        swapped = self._store.swap_identity(temp_id, response.id, merged)

        leftover = changed_fields(response, swapped)
        if leftover:
            logger.debug("Flushing edits made during create of %s: %s", response.id, ", ".join(leftover))
            self._scheduler.schedule(
                response.id, fields_payload(*leftover), WriteMode.IMMEDIATE, on_error=on_error
            )
        return swapped
