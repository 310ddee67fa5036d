"""Exception types raised by the whale watcher."""


class WhaleWatchError(Exception):
    """Base class for whale watcher errors."""


class FetchError(WhaleWatchError):
    """Upstream fetch failed (network failure or non-2xx provider response)."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"Fetch failed ({status}): {message}")
        self.status = status
        self.message = message

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429


class StorageFullError(WhaleWatchError):
    """Storage rejected a write because its quota is exhausted."""

    def __init__(self, key: str, size: int, quota: int) -> None:
        super().__init__(
            f"Storage quota exceeded writing {key!r}: {size} bytes over quota {quota}"
        )
        self.key = key
        self.size = size
        self.quota = quota


class QueueClosedError(WhaleWatchError):
    """Operation was still queued when the request queue was closed."""
