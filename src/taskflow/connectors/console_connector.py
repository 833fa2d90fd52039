# src/taskflow/connectors/console_connector.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)

EXIT_COMMANDS = ("/exit", "/quit")
STDIN_THREAD_NAME = "taskflow-stdin"


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


async def read_line(prompt: str) -> str:
    """
    input() on a daemon thread.

    Not the default executor: asyncio.run() joins that on exit, and a thread
    blocked in input() would keep the process alive after a signal.
    """
    loop = asyncio.get_running_loop()
    fut: asyncio.Future[str] = loop.create_future()

    def _deliver(value: str | None, exc: Exception | None) -> None:
        if fut.done():
            return
        if exc is not None:
            fut.set_exception(exc)
        else:
            fut.set_result(value or "")

    def _reader() -> None:
        try:
            value, exc = input(prompt), None
        except Exception as e:  # EOFError included
            value, exc = None, e
        # The loop may already be closed when input() finally returns.
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(_deliver, value, exc)

    threading.Thread(target=_reader, name=STDIN_THREAD_NAME, daemon=True).start()
    return await fut


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def _prompt(state: AppState) -> str:
    user = state.user
    return f"{user.name} > " if user else "taskflow > "


async def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started.")
    _print_ts("[CONSOLE] Type /help for commands. Use /exit to quit.\n")

    def emit(text: str) -> None:
        # Immediate feedback for slow operations (sign-in, refresh).
        _print_ts(text)

    # Store version after our own last command; anything newer came from realtime.
    shown_version = state.store.version

    while True:
        try:
            user_input = (await read_line(_prompt(state))).strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if state.store.version != shown_version:
            _print_ts(f"[SYNC] Task list updated ({len(state.store)} tasks).")
            shown_version = state.store.version

        if not user_input:
            continue

        if user_input.lower() in EXIT_COMMANDS:
            logger.info("Console exit command received.")
            break

        try:
            response = await command_registry.handle(state, user_input, emit=emit)
        except Exception:
            logger.exception("Command handler crashed.")
            response = "Internal error while handling a command."

        if response is None:
            response = "Commands start with '/'. Use /help to list them."
        _print_ts(response)
        shown_version = state.store.version

    logger.info("Console connector finished.")
