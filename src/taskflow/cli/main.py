# src/taskflow/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, restores a saved session, then runs
the console REPL (or just keeps the realtime sync alive when the console is
disabled) until exit or a signal.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from ..cli.bootstrap import create_initial_state, shutdown
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.errors import TaskFlowError
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


async def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_dir = getattr(settings, "data_dir", ".local/taskflow")
    setup_logging(log_dir=log_dir, console_level=console_level)

    # keep noisy libs readable
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logger.info("Starting %s...", getattr(settings, "app_name", "TaskFlow"))

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    if state.auth is not None and state.http is not None and state.http.configured:
        try:
            restored = await state.auth.restore_session()
        except TaskFlowError as e:
            logger.warning("Could not restore the previous session: %s", e)
        else:
            if restored is not None:
                print(f"Signed in as {restored.email} ({len(state.store)} tasks).")

    # Use an Event so main can wait without a busy loop.
    stop_main = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(signum: int) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        # add_signal_handler is unavailable on some platforms (Windows).
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, _handle_signal, sig)

    try:
        if settings.console_enabled:
            console = asyncio.create_task(run_console_loop(state))
            stopper = asyncio.create_task(stop_main.wait())
            await asyncio.wait({console, stopper}, return_when=asyncio.FIRST_COMPLETED)
            stopper.cancel()
            if not console.done():
                # The stdin reader is a daemon thread; it does not hold the process open.
                console.cancel()
        else:
            logger.info("Console disabled. Keeping realtime sync alive. Press Ctrl+C to stop.")
            await stop_main.wait()
    finally:
        await shutdown(state)
        logger.info("Bye.")


def run() -> None:
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    run()
