"""Snapshot comparison."""

import math

from ..core.types import BalanceChange, DeltaResult, HolderRecord, Snapshot

BALANCE_EPSILON = 0.01


def compare(current: Snapshot, previous: Snapshot | None) -> DeltaResult:
    """Compare two snapshots of the same token.

    Args:
        current: Newest snapshot
        previous: Snapshot to compare against, None for the first capture

    Returns:
        Addresses that entered or exited the holder set, and the balance
        changes larger than BALANCE_EPSILON for addresses present in both.
        Change percent is 0 when the previous balance is 0.
    """
    if previous is None:
        return DeltaResult()

    current_map = current.balances()
    previous_map = previous.balances()

    entered: set[str] = set()
    changed: dict[str, BalanceChange] = {}

    for address, holder in current_map.items():
        before = previous_map.get(address)
        if before is None:
            entered.add(address)
            continue

        delta = holder.balance - before.balance
        if abs(delta) <= BALANCE_EPSILON:
            continue

        change_percent = delta / before.balance * 100 if before.balance > 0 else 0.0
        changed[address] = BalanceChange(
            previous_balance=before.balance,
            current_balance=holder.balance,
            change_percent=change_percent,
        )

    exited = {address for address in previous_map if address not in current_map}

    return DeltaResult(entered=frozenset(entered), exited=frozenset(exited), changed=changed)


def top_holders(snapshot: Snapshot, fraction: float = 0.1) -> list[HolderRecord]:
    """Return the whale cohort: the largest ``fraction`` of holders by balance.

    At least one holder is returned when the snapshot is non-empty.
    """
    if not 0 < fraction <= 1:
        raise ValueError(f"fraction must be in (0, 1], got {fraction}")
    if not snapshot.holders:
        return []

    count = max(1, math.ceil(len(snapshot.holders) * fraction))
    ranked = sorted(snapshot.holders, key=lambda holder: holder.balance, reverse=True)
    return ranked[:count]


def significant_changes(delta: DeltaResult, threshold_pct: float) -> dict[str, BalanceChange]:
    """Return the changes whose absolute percent move reaches threshold_pct."""
    return {
        address: change
        for address, change in delta.changed.items()
        if abs(change.change_percent) >= threshold_pct
    }
