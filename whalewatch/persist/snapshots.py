"""Bounded per-entity history of holder snapshots."""

import json
from collections.abc import Iterable
from typing import Any

import structlog

from ..core.clock import SystemClock, from_millis, to_millis
from ..core.errors import StorageFullError
from ..core.interfaces import Clock, KeyValueStorage
from ..core.types import EntityKey, Snapshot
from ..data.normalize import normalize_holders

logger = structlog.get_logger(__name__)

SNAPSHOT_PREFIX = "snapshot_"
DEFAULT_HISTORY_SIZE = 5


def snapshot_to_json(snapshot: Snapshot) -> dict[str, Any]:
    """Serialize a snapshot to its stored layout."""
    return {
        "timestamp": to_millis(snapshot.captured_at),
        "holders": [
            {
                "address": holder.address,
                "balance": holder.balance,
                "percentage": holder.percent_of_supply,
            }
            for holder in snapshot.holders
        ],
    }


def snapshot_from_json(data: dict[str, Any]) -> Snapshot:
    """Deserialize a stored snapshot."""
    return Snapshot(
        captured_at=from_millis(float(data["timestamp"])),
        holders=normalize_holders(data.get("holders") or []),
    )


class SnapshotStore:
    """Owns the rolling snapshot history of every tracked entity.

    Histories are kept in memory and written through to storage under
    ``snapshot_<namespace>_<entityId>`` as a JSON array ordered oldest to
    newest. Only the newest ``max_history`` snapshots are retained.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        clock: Clock | None = None,
        max_history: int = DEFAULT_HISTORY_SIZE,
    ) -> None:
        """Initialize snapshot store.

        Args:
            storage: Backing key-value storage
            clock: Time source for capture timestamps
            max_history: Maximum snapshots retained per entity
        """
        if max_history < 1:
            raise ValueError(f"max_history must be at least 1, got {max_history}")

        self.storage = storage
        self.clock = clock or SystemClock()
        self.max_history = max_history
        self._histories: dict[EntityKey, list[Snapshot]] = {}

    def _storage_key(self, entity: EntityKey) -> str:
        return f"{SNAPSHOT_PREFIX}{entity.storage_suffix}"

    def _load(self, entity: EntityKey) -> list[Snapshot]:
        raw = self.storage.get(self._storage_key(entity))
        if raw is None:
            return []

        try:
            items = json.loads(raw)
            if not isinstance(items, list):
                raise ValueError("stored history is not a list")
            history = [snapshot_from_json(item) for item in items]
        except (ValueError, TypeError, KeyError) as e:
            logger.warning("Ignoring unreadable snapshot history", entity=str(entity), error=str(e))
            return []

        return history[-self.max_history :]

    def history(self, entity: EntityKey) -> list[Snapshot]:
        """Return the entity's snapshots, oldest first."""
        if entity not in self._histories:
            self._histories[entity] = self._load(entity)
        return list(self._histories[entity])

    def latest(self, entity: EntityKey) -> Snapshot | None:
        """Return the most recent snapshot, if any."""
        history = self.history(entity)
        return history[-1] if history else None

    def previous(self, entity: EntityKey) -> Snapshot | None:
        """Return the second most recent snapshot, if any."""
        history = self.history(entity)
        return history[-2] if len(history) >= 2 else None

    def save(self, entity: EntityKey, raw_holders: Iterable[Any]) -> list[Snapshot]:
        """Capture a new snapshot from raw holder rows and append it.

        Returns:
            The updated history, oldest first. It is returned even when the
            durable write failed.
        """
        snapshot = Snapshot(captured_at=self.clock.now(), holders=normalize_holders(raw_holders))

        history = self.history(entity)
        history.append(snapshot)
        history = history[-self.max_history :]
        self._histories[entity] = history

        self._persist(entity, history)

        logger.info(
            "Snapshot saved",
            entity=str(entity),
            holders=len(snapshot.holders),
            history_size=len(history),
        )
        return list(history)

    def _persist(self, entity: EntityKey, history: list[Snapshot]) -> None:
        key = self._storage_key(entity)

        try:
            self.storage.set(key, json.dumps([snapshot_to_json(s) for s in history]))
            return
        except StorageFullError as e:
            logger.warning(
                "Storage full, persisting newest snapshot only",
                entity=str(entity),
                error=str(e),
            )

        try:
            self.storage.set(key, json.dumps([snapshot_to_json(history[-1])]))
        except StorageFullError as e:
            logger.error(
                "Snapshot not persisted, storage full",
                entity=str(entity),
                error=str(e),
            )

    def clear(self, entity: EntityKey) -> None:
        """Forget the entity's history."""
        self._histories.pop(entity, None)
        self.storage.delete(self._storage_key(entity))
