"""System clock and asyncio-backed timer."""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from .interfaces import TimerHandle


class SystemClock:
    """Clock backed by the system wall clock."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class AsyncioTimer:
    """Timer that schedules callbacks on the running event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay), callback)


def to_millis(ts: datetime) -> int:
    """Convert a datetime to integer epoch milliseconds."""
    return int(round(ts.timestamp() * 1000))


def from_millis(value: float) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(value / 1000, tz=UTC)
