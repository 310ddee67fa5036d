"""Tests for core data types."""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from whalewatch.core.errors import FetchError, StorageFullError
from whalewatch.core.types import (
    BalanceChange,
    DeltaResult,
    EntityKey,
    FetchRequest,
    HolderRecord,
    PollOutcome,
    Snapshot,
)


def test_entity_key_normalizes_case() -> None:
    """Test EntityKey lower-cases namespace and address."""
    key = EntityKey(namespace="Arbitrum", entity_id=" 0xABCdef ")

    assert key.namespace == "arbitrum"
    assert key.entity_id == "0xabcdef"
    assert key.storage_suffix == "arbitrum_0xabcdef"
    assert str(key) == "arbitrum:0xabcdef"


def test_entity_key_hashable() -> None:
    """Test EntityKey can be used as a dict key."""
    a = EntityKey(namespace="eth", entity_id="0xAA")
    b = EntityKey(namespace="ETH", entity_id="0xaa")

    assert a == b
    assert {a: 1}[b] == 1


def test_holder_record_rejects_negative_balance() -> None:
    """Test HolderRecord enforces non-negative values."""
    with pytest.raises(ValidationError):
        HolderRecord(address="0xa", balance=-1.0)


def test_snapshot_is_immutable() -> None:
    """Test Snapshot cannot be mutated."""
    snapshot = Snapshot(
        captured_at=datetime(2024, 1, 1, tzinfo=UTC),
        holders=(HolderRecord(address="0xa", balance=1.0),),
    )

    with pytest.raises(ValidationError):
        snapshot.holders = ()

    assert snapshot.balances()["0xa"].balance == 1.0


def test_delta_result_is_empty() -> None:
    """Test DeltaResult emptiness."""
    assert DeltaResult().is_empty
    assert not DeltaResult(entered=frozenset({"0xa"})).is_empty
    assert not DeltaResult(
        changed={"0xa": BalanceChange(previous_balance=1, current_balance=2, change_percent=100)}
    ).is_empty


def test_fetch_request_cache_key_is_stable() -> None:
    """Test FetchRequest cache key ignores parameter order."""
    a = FetchRequest(endpoint="/erc20/0xa/owners", params={"limit": 100, "chain": "eth"})
    b = FetchRequest(endpoint="/erc20/0xa/owners", params={"chain": "eth", "limit": 100})
    c = FetchRequest(endpoint="/erc20/0xa/owners", params={"chain": "bsc", "limit": 100})

    assert a.cache_key == b.cache_key
    assert a.cache_key != c.cache_key


def test_poll_outcome_ok() -> None:
    """Test PollOutcome reports failure through error."""
    key = EntityKey(entity_id="0xa")

    assert PollOutcome(entity=key, delta=DeltaResult()).ok
    assert not PollOutcome(entity=key, error=FetchError(429, "rate limited")).ok


def test_error_attributes() -> None:
    """Test error types carry their details."""
    error = FetchError(429, "Too many requests")
    assert error.status == 429
    assert error.message == "Too many requests"
    assert error.is_rate_limited
    assert "429" in str(error)

    full = StorageFullError("cache_x", 120, 100)
    assert full.key == "cache_x"
    assert full.quota == 100
