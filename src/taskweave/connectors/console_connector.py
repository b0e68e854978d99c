# src/taskweave/connectors/console_connector.py

from __future__ import annotations

import asyncio
import inspect
import logging
import sys
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState
from ..tasks.task_api import can_leave, shutdown

logger = logging.getLogger(__name__)

EXIT_COMMANDS = ("/exit", "/quit")


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    try:
        if sys.stdout.isatty():
            sys.stdout.write("\033[1A\033[2K\r")
            sys.stdout.write(line + "\n")
            sys.stdout.flush()
        else:
            print(line)
    except Exception:
        print(line)


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def _report_errors(state: AppState) -> None:
    for err in state.take_errors():
        _print_ts(f"[SAVE FAILED] {err}. Use /reload to resync.")


async def _try_exit(state: AppState, args: list[str]) -> bool:
    force = any(a.lower() in ("force", "-f", "--force") for a in args)
    if not force and not can_leave(state):
        pending = state.scheduler.pending_count
        _print_ts(
            f"{pending} write(s) still pending. Wait a moment and retry, "
            "or use /exit force to drop them."
        )
        return False

    await shutdown(state, force=force)
    _report_errors(state)
    return True


async def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started (owner=%s).", state.owner_id)
    _print_ts("[CONSOLE] Use /list to see today's tasks, /help for commands, /exit to quit.\n")

    while True:
        _report_errors(state)
        try:
            user_input = (await asyncio.to_thread(input, ">>> ")).strip()
            _rewrite_prev_line(f"[{_ts_local()}] >>> {user_input}")
        except EOFError:
            logger.info("Console EOF received, exiting.")
            await shutdown(state, force=False)
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            await shutdown(state, force=True)
            break

        if not user_input:
            continue

        head, *rest = user_input.split()
        if head.lower() in EXIT_COMMANDS:
            logger.info("Console exit command received.")
            if await _try_exit(state, rest):
                break
            continue

        try:
            response = command_registry.handle(state, user_input, emit=_print_ts)
            if inspect.isawaitable(response):
                response = await response
        except Exception:
            logger.exception("Command handler crashed.")
            response = "Internal error while handling a command."

        if response is None:
            response = "Not a command. Use /help to list available commands."
        _print_ts(str(response))
