"""Debounced saves.

Converted to manual asyncio.run wrappers to avoid reliance on pytest-asyncio.
"""

from __future__ import annotations

import asyncio
import io
import json

from issuegraph.debounce import DEFAULT_DELAY_MS, Debouncer
from issuegraph.logging import configure_logging


def test_default_delay_is_half_a_second() -> None:
    async def _noop() -> None:
        return None

    assert DEFAULT_DELAY_MS == 500
    assert Debouncer(_noop).delay == 0.5


def test_burst_of_schedules_runs_once() -> None:
    calls: list[int] = []

    async def _save() -> None:
        calls.append(1)

    async def _run() -> None:
        debouncer = Debouncer(_save, delay=0.02)
        for _ in range(5):
            debouncer.schedule()
            await asyncio.sleep(0.005)
        assert debouncer.pending
        await asyncio.sleep(0.08)
        assert not debouncer.pending
        await debouncer.flush()

    asyncio.run(_run())
    assert calls == [1]


def test_flush_runs_pending_call_immediately() -> None:
    calls: list[str] = []

    async def _save() -> None:
        calls.append("saved")

    async def _run() -> None:
        debouncer = Debouncer(_save, delay=60)
        debouncer.schedule()
        await debouncer.flush()
        assert calls == ["saved"]
        assert not debouncer.pending
        await debouncer.flush()

    asyncio.run(_run())
    assert calls == ["saved"]


def test_cancel_drops_pending_call() -> None:
    calls: list[str] = []

    async def _save() -> None:
        calls.append("saved")

    async def _run() -> None:
        debouncer = Debouncer(_save, delay=0.01)
        debouncer.schedule()
        debouncer.cancel()
        await asyncio.sleep(0.05)
        await debouncer.flush()

    asyncio.run(_run())
    assert calls == []


def test_callback_errors_are_logged_not_raised() -> None:
    stream = io.StringIO()
    configure_logging(json_logging=True, stream=stream)

    async def _boom() -> None:
        raise RuntimeError("save failed")

    async def _run() -> None:
        debouncer = Debouncer(_boom, delay=0.01)
        debouncer.schedule()
        await asyncio.sleep(0.05)
        await debouncer.flush()

    asyncio.run(_run())
    entry = json.loads(stream.getvalue())
    assert entry["message"] == "debounced callback failed"
    assert entry["error"] == "save failed"
