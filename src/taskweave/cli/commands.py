# src/taskweave/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import date
from typing import Any, cast

from ..core.state import AppState
from ..tasks.recurrence import is_valid_rule
from ..tasks.task_api import can_leave, load_window, open_view, reload
from ..tasks.task_models import WEEKDAY_NAMES, RecurrenceRule, Task
from ..views.projection import ProjectionFilters
from ..views.task_view import TaskView

CommandEmitter = Callable[[str], None]
CommandResult = str | Awaitable[str]
CommandHandler2 = Callable[[AppState, list[str]], CommandResult]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], CommandResult]
CommandHandler = CommandHandler2 | CommandHandler3

CONSOLE_VIEW = "console"

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /list, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> CommandResult | None:
        """
        Handle a string like "/command args".
        Returns a reply (a string, or an awaitable for async commands) or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except Exception:
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return h3(state, args, emit)

        h2 = cast(CommandHandler2, handler)
        return h2(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- helpers ----


def console_view(state: AppState) -> TaskView:
    view = state.views.get(CONSOLE_VIEW)
    if view is None:
        view = open_view(
            state,
            CONSOLE_VIEW,
            filters=ProjectionFilters(on_date=date.today(), show_completed=True),
        )
    return view


def format_task(index: int, task: Task) -> str:
    mark = "x" if task.completed else " "
    when = task.scheduled_date.isoformat() if task.scheduled_date else "no date"
    flags = ("!" if task.importance else "") + ("*" if task.urgency else "")
    repeat = f" (repeats {task.recurrence.frequency})" if is_valid_rule(task.recurrence) else ""
    draft = " (unsaved)" if task.is_draft else ""
    title = task.title or "<untitled>"
    return f"{index}. [{mark}] {title} - {when}{' ' + flags if flags else ''}{repeat}{draft}"


def _pick(state: AppState, raw: str) -> Task:
    items = console_view(state).items()
    try:
        idx = int(raw)
    except ValueError:
        raise ValueError(f"not a task number: {raw!r}") from None
    if not 1 <= idx <= len(items):
        raise ValueError(f"no task #{idx} in the current list ({len(items)} shown)")
    return items[idx - 1]


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


_EDIT_FIELDS: dict[str, tuple[str, Callable[[str], Any]]] = {
    "title": ("title", str),
    "description": ("description", str),
    "date": ("scheduled_date", lambda v: None if v.lower() == "none" else date.fromisoformat(v)),
    "important": ("importance", _parse_bool),
    "urgent": ("urgency", _parse_bool),
    "minutes": ("estimated_minutes", int),
    "goal": ("goal_id", lambda v: None if v.lower() == "none" else v),
    "area": ("area_id", lambda v: None if v.lower() == "none" else v),
}


# ---- commands ----


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    pending = state.scheduler.pending_count
    return (
        "Status:\n"
        f"  Owner: {state.owner_id}\n"
        f"  Tasks in memory: {len(state.store)}\n"
        f"  Pending writes: {pending}{' (leaving now may lose edits)' if not can_leave(state) else ''}\n"
        f"  Unreported errors: {len(state.errors)}"
    )


def cmd_list(state: AppState, args: list[str]) -> str:
    """
    /list               -> today's tasks
    /list all           -> every loaded task
    /list 2024-06-12    -> tasks of one day
    /list ... open      -> hide completed tasks
    """
    view = console_view(state)
    on_date: date | None = date.today()
    show_completed = True
    for arg in args:
        a = arg.lower()
        if a == "all":
            on_date = None
        elif a == "today":
            on_date = date.today()
        elif a == "open":
            show_completed = False
        else:
            try:
                on_date = date.fromisoformat(a)
            except ValueError:
                return f"Unknown /list argument: {arg}"

    view.set_filters(on_date=on_date, show_completed=show_completed)
    items = view.items()
    if not items:
        return "No tasks."
    header = f"Tasks for {on_date.isoformat()}:" if on_date else "All loaded tasks:"
    return "\n".join([header, *(format_task(i, t) for i, t in enumerate(items, start=1))])


def cmd_add(state: AppState, args: list[str]) -> str:
    title = " ".join(args).strip()
    if not title:
        return "Usage: /add <title>"
    view = console_view(state)
    draft = view.new_task()
    view.commit(draft.id, title)
    logger.debug("Console add draft=%s", draft.id)
    return f"Added: {title} (saving...)"


def cmd_edit(state: AppState, args: list[str]) -> str:
    if len(args) < 2 or "=" not in args[1]:
        return "Usage: /edit <n> <field>=<value>  fields: " + ", ".join(_EDIT_FIELDS)
    try:
        task = _pick(state, args[0])
    except ValueError as e:
        return str(e)

    key, _, raw = " ".join(args[1:]).partition("=")
    entry = _EDIT_FIELDS.get(key.strip().lower())
    if entry is None:
        return f"Unknown field: {key}. Fields: {', '.join(_EDIT_FIELDS)}"
    field_name, parse = entry
    try:
        value = parse(raw.strip())
    except ValueError as e:
        return f"Bad value for {key}: {e}"

    edited = console_view(state).edit(task.id, **{field_name: value})
    return f"Updated: {edited.title or '<untitled>'}"


def cmd_done(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /done <n>"
    try:
        task = _pick(state, args[0])
    except ValueError as e:
        return str(e)
    edited = console_view(state).toggle_completed(task.id)
    if task.is_template:
        return f"Closed occurrence {task.scheduled_date} of {edited.title}."
    return f"{'Done' if edited.completed else 'Reopened'}: {edited.title}"


def cmd_repeat(state: AppState, args: list[str]) -> str:
    """
    /repeat <n> daily
    /repeat <n> weekly mon wed
    /repeat <n> monthly 1 15 31
    /repeat <n> off
    """
    if len(args) < 2:
        return "Usage: /repeat <n> daily | weekly <days...> | monthly <days...> | off"
    try:
        task = _pick(state, args[0])
    except ValueError as e:
        return str(e)

    view = console_view(state)
    if args[1].lower() == "off":
        view.edit(task.id, recurrence=None)
        return "Recurrence disabled."

    names = {name[:3]: name for name in WEEKDAY_NAMES}
    days = [names.get(d.lower()[:3], d) for d in args[2:]]
    try:
        rule = RecurrenceRule.build(args[1], start_date=task.scheduled_date or date.today(), selected_days=days)
    except ValueError as e:
        return str(e)

    view.expand(task.id)
    view.edit(task.id, recurrence=rule)
    view.collapse(task.id)

    settled = state.store.get(task.id)
    if settled is not None and settled.recurrence is None:
        return "No days selected; recurrence left off."
    return f"Repeats {rule.frequency}."


def cmd_delete(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /delete <n>"
    try:
        task = _pick(state, args[0])
    except ValueError as e:
        return str(e)
    console_view(state).delete(task.id)
    return f"Deleted: {task.title}"


async def cmd_reload(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    start, end = load_window(state)
    if emit:
        emit(f"Reloading {start.isoformat()}..{end.isoformat()}...")
    change = await reload(state, start, end)
    return f"Reloaded: {len(change.upserted)} updated, {len(change.removed)} removed."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show session status (tasks, pending writes).")
registry.register("list", cmd_list, help_text="List tasks: /list [today|all|YYYY-MM-DD] [open].", aliases=["ls"])
registry.register("add", cmd_add, help_text="Add a task for the listed day: /add <title>.")
registry.register("edit", cmd_edit, help_text="Edit a task: /edit <n> <field>=<value>.")
registry.register("done", cmd_done, help_text="Toggle completion: /done <n>.")
registry.register("repeat", cmd_repeat, help_text="Set recurrence: /repeat <n> daily|weekly|monthly [days]|off.")
registry.register("delete", cmd_delete, help_text="Delete a task: /delete <n>.", aliases=["rm"])
registry.register("reload", cmd_reload, help_text="Reload tasks from storage.")
