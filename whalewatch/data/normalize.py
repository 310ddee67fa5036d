"""Normalization of raw provider payloads into core records.

All tolerant parsing of provider data lives here: numeric fields that are
missing or malformed become 0 instead of failing the record.
"""

import math
from collections.abc import Iterable
from datetime import datetime
from typing import Any

import structlog

from ..core.types import HolderRecord, TransferRecord

logger = structlog.get_logger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
DEFAULT_DECIMALS = 18
MAX_DECIMALS = 77


def parse_numeric_or_zero(value: Any) -> float:
    """Parse a provider numeric field, returning 0.0 for anything unusable.

    Accepts ints, floats and numeric strings. None, booleans, empty or
    non-numeric strings, NaN, infinities and integers too large for a float
    all map to 0.0.
    """
    if value is None or isinstance(value, bool):
        return 0.0

    if not isinstance(value, int | float | str):
        return 0.0

    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except (ValueError, OverflowError):
        return 0.0

    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def _first_present(raw: dict[str, Any], *fields: str) -> Any:
    for field in fields:
        value = raw.get(field)
        if value is not None and value != "":
            return value
    return None


def map_holder_to_record(raw: Any) -> HolderRecord:
    """Map one raw holder row to a HolderRecord.

    Understands the provider owner shape (``owner_address``,
    ``balance_formatted``/``balance``, ``percentage_relative_to_total_supply``)
    and the stored snapshot shape (``address``, ``balance``, ``percentage``).
    """
    if not isinstance(raw, dict):
        raw = {}

    address = _first_present(raw, "owner_address", "address")
    balance = parse_numeric_or_zero(_first_present(raw, "balance_formatted", "balance"))
    percent = parse_numeric_or_zero(
        _first_present(raw, "percentage_relative_to_total_supply", "percentage")
    )

    return HolderRecord(
        address=str(address or "").strip().lower(),
        balance=max(balance, 0.0),
        percent_of_supply=max(percent, 0.0),
    )


def normalize_holders(raw_holders: Iterable[Any]) -> tuple[HolderRecord, ...]:
    """Normalize raw holder rows, keeping provider order.

    Rows without an address cannot be tracked and are skipped; a repeated
    address keeps its first occurrence.
    """
    records: list[HolderRecord] = []
    seen: set[str] = set()
    skipped = 0

    for raw in raw_holders or ():
        record = map_holder_to_record(raw)
        if not record.address or record.address in seen:
            skipped += 1
            continue
        seen.add(record.address)
        records.append(record)

    if skipped:
        logger.debug("Skipped holder rows", skipped=skipped, kept=len(records))
    return tuple(records)


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _parse_decimals(value: Any) -> int:
    if value in (None, ""):
        return DEFAULT_DECIMALS
    decimals = parse_numeric_or_zero(value)
    if decimals != int(decimals) or not 0 <= decimals <= MAX_DECIMALS:
        logger.debug("Ignoring unusable token decimals", token_decimals=value)
        return DEFAULT_DECIMALS
    return int(decimals)


def map_transfer_to_record(raw: Any) -> TransferRecord:
    """Map one raw transfer row to a TransferRecord.

    The raw ``value`` is in base units and is scaled by ``token_decimals``
    (default 18, also used when the row's decimals are not an integer in
    0..77). Transfers from the zero address are mints, transfers to it are
    burns.
    """
    if not isinstance(raw, dict):
        raw = {}

    decimals = _parse_decimals(raw.get("token_decimals"))
    amount = parse_numeric_or_zero(raw.get("value")) / (10**decimals)

    from_address = str(raw.get("from_address") or "").lower()
    to_address = str(raw.get("to_address") or "").lower()

    if from_address == ZERO_ADDRESS:
        kind = "mint"
    elif to_address == ZERO_ADDRESS:
        kind = "burn"
    else:
        kind = "transfer"

    return TransferRecord(
        tx_hash=str(raw.get("transaction_hash") or ""),
        from_address=from_address,
        to_address=to_address,
        amount=max(amount, 0.0),
        kind=kind,
        block_timestamp=_parse_timestamp(raw.get("block_timestamp")),
    )


def normalize_transfers(raw_transfers: Iterable[Any]) -> list[TransferRecord]:
    """Normalize transfers, largest amount first."""
    records = [map_transfer_to_record(raw) for raw in raw_transfers or ()]
    records.sort(key=lambda record: record.amount, reverse=True)
    return records
