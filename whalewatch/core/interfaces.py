"""Core interfaces for the whale watcher."""

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from .types import EntityKey, FetchRequest, PollOutcome


@runtime_checkable
class KeyValueStorage(Protocol):
    """Durable string key-value storage provided by the host."""

    def get(self, key: str) -> str | None:
        """Return the stored value or None."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store a value, raising StorageFullError when over quota."""
        ...

    def delete(self, key: str) -> None:
        """Remove a key if present."""
        ...

    def keys(self) -> Iterable[str]:
        """Return all stored keys."""
        ...


class Clock(Protocol):
    """Wall-clock source."""

    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""
        ...


class TimerHandle(Protocol):
    """Handle returned by Timer.call_later."""

    def cancel(self) -> None:
        """Cancel the pending callback."""
        ...


class Timer(Protocol):
    """Deadline scheduler used by the poll scheduler."""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        """Invoke callback after delay seconds."""
        ...


class Fetcher(Protocol):
    """Single async call to the upstream proxy."""

    async def fetch(self, request: FetchRequest) -> Any:
        """Return decoded JSON or raise FetchError."""
        ...


class HolderSource(Protocol):
    """Source of raw holder rows for a tracked token."""

    async def fetch_holders(self, entity: EntityKey) -> list[dict[str, Any]]:
        """Return raw provider holder rows."""
        ...


class AlertSink(Protocol):
    """Alert sink protocol."""

    async def push(self, message: str) -> None:
        """Push alert message."""
        ...


class OutcomeListener(Protocol):
    """Receives poll outcomes from the scheduler."""

    def __call__(self, outcome: PollOutcome) -> Any: ...
