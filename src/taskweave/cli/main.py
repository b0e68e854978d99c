# src/taskweave/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, loads the configured date window,
then runs the console REPL on an asyncio loop.
"""

from __future__ import annotations

import asyncio
import logging

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.state import AppState
from ..errors import PersistenceError
from ..logging_setup import setup_logging
from ..tasks.task_api import load_window, reload, shutdown

logger = logging.getLogger(__name__)


async def _run(state: AppState) -> None:
    start, end = load_window(state)
    try:
        await reload(state, start, end)
    except PersistenceError:
        logger.exception("Initial load failed; starting with an empty list.")

    try:
        if state.settings.console_enabled:
            await run_console_loop(state)
        else:
            logger.info("Console disabled. Loaded %d tasks, nothing else to run.", len(state.store))
    finally:
        # No-op when the console already shut down cleanly.
        await shutdown(state, force=False)


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_dir = getattr(settings, "data_dir", ".local/taskweave")
    log_file = setup_logging(log_dir=log_dir, console_level=console_level)

    logger.info("Starting %s (log file: %s)...", getattr(settings, "app_name", "taskweave"), log_file)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    try:
        asyncio.run(_run(state))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        logger.info("Bye.")


if __name__ == "__main__":
    main()
