# tests/test_console.py

from __future__ import annotations

import asyncio
import builtins
import threading

import pytest

from taskflow.connectors.console_connector import STDIN_THREAD_NAME, read_line


def _stdin_threads() -> list[threading.Thread]:
    return [t for t in threading.enumerate() if t.name == STDIN_THREAD_NAME]


@pytest.mark.asyncio
async def test_read_line_returns_input(monkeypatch: pytest.MonkeyPatch) -> None:
    prompts: list[str] = []

    def fake_input(prompt: str = "") -> str:
        prompts.append(prompt)
        return "/help"

    monkeypatch.setattr(builtins, "input", fake_input)
    assert await read_line("> ") == "/help"
    assert prompts == ["> "]


@pytest.mark.asyncio
async def test_read_line_propagates_eof(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_input(prompt: str = "") -> str:
        raise EOFError

    monkeypatch.setattr(builtins, "input", fake_input)
    with pytest.raises(EOFError):
        await read_line("> ")


@pytest.mark.asyncio
async def test_blocked_reader_is_a_daemon_thread(monkeypatch: pytest.MonkeyPatch) -> None:
    release = threading.Event()

    def fake_input(prompt: str = "") -> str:
        release.wait(5.0)
        return "late"

    monkeypatch.setattr(builtins, "input", fake_input)
    try:
        with pytest.raises(TimeoutError):
            await asyncio.wait_for(read_line("> "), 0.05)
        threads = _stdin_threads()
        assert threads and all(t.daemon for t in threads)
    finally:
        release.set()
    for t in _stdin_threads():
        t.join(1.0)
