"""Core data types for the whale watcher."""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EntityKey(BaseModel):
    """Identity of a tracked token: network namespace plus token address."""

    model_config = ConfigDict(frozen=True)

    namespace: str = Field(default="eth", description="Chain / network namespace")
    entity_id: str = Field(description="Token contract address")

    @field_validator("namespace", "entity_id")
    @classmethod
    def _lower(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def storage_suffix(self) -> str:
        """Suffix used to build storage keys for this entity."""
        return f"{self.namespace}_{self.entity_id}"

    def __str__(self) -> str:
        return f"{self.namespace}:{self.entity_id}"


class CacheEntry(BaseModel):
    """Cached payload with its storage time and time to live."""

    key: str
    payload: Any
    stored_at: datetime
    ttl: float = Field(description="Time to live in seconds")


class HolderRecord(BaseModel):
    """One wallet's stake in a token at a point in time."""

    model_config = ConfigDict(frozen=True)

    address: str = Field(description="Lower-cased wallet address")
    balance: float = Field(default=0.0, ge=0, description="Token balance")
    percent_of_supply: float = Field(
        default=0.0, ge=0, description="Share of total supply in percent"
    )


class Snapshot(BaseModel):
    """Immutable timestamped capture of a token's holder set."""

    model_config = ConfigDict(frozen=True)

    captured_at: datetime = Field(description="Capture timestamp (UTC)")
    holders: tuple[HolderRecord, ...] = Field(
        default=(), description="Holders in provider order"
    )

    def balances(self) -> dict[str, HolderRecord]:
        """Return holders keyed by address."""
        return {holder.address: holder for holder in self.holders}


class BalanceChange(BaseModel):
    """Balance movement of an address present in both compared snapshots."""

    model_config = ConfigDict(frozen=True)

    previous_balance: float
    current_balance: float
    change_percent: float


class DeltaResult(BaseModel):
    """Structural and magnitude difference between two snapshots."""

    model_config = ConfigDict(frozen=True)

    entered: frozenset[str] = Field(default_factory=frozenset)
    exited: frozenset[str] = Field(default_factory=frozenset)
    changed: dict[str, BalanceChange] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.entered or self.exited or self.changed)


class FetchRequest(BaseModel):
    """Descriptor of a single upstream call routed through the proxy."""

    model_config = ConfigDict(frozen=True)

    endpoint: str = Field(description="Provider path, e.g. /erc20/<token>/owners")
    params: dict[str, Any] = Field(default_factory=dict)
    chain: str | None = Field(default=None, description="Routing hint for the proxy")
    source: str | None = Field(default=None, description="Upstream provider hint")

    @property
    def cache_key(self) -> str:
        """Stable key identifying this request in the TTL cache."""
        params = json.dumps(self.params, sort_keys=True, separators=(",", ":"))
        return f"{self.source or 'moralis'}:{self.chain or ''}:{self.endpoint}:{params}"


class TransferRecord(BaseModel):
    """Normalized token transfer."""

    model_config = ConfigDict(frozen=True)

    tx_hash: str
    from_address: str
    to_address: str
    amount: float = Field(default=0.0, ge=0)
    kind: Literal["mint", "burn", "transfer"] = "transfer"
    block_timestamp: datetime | None = None


class PollState(str, Enum):
    """Poll scheduler states."""

    IDLE = "idle"
    FETCHING = "fetching"
    COOLING = "cooling"
    FAILED = "failed"


class PollOutcome(BaseModel):
    """Result of one completed poll cycle."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    entity: EntityKey
    snapshot: Snapshot | None = None
    previous: Snapshot | None = None
    delta: DeltaResult | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
