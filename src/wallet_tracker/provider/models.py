"""Strict schemas for Blockchair API payloads.

Payloads are decoded through pydantic models in strict mode. A missing field,
a wrong type, or a hash that does not line up with what was requested raises
MalformedDataError; nothing is defaulted or coerced.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from wallet_tracker.errors import MalformedDataError, SyncStage

# Blockchair reports timestamps in UTC without an offset.
BLOCKCHAIR_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


# Store columns are Numeric(24, 8); values are rounded once here so a synced
# record compares equal to what the store hands back.
AMOUNT_QUANTUM = Decimal("0.00000001")


def _to_decimal(value: float | int) -> Decimal:
    return Decimal(str(value)).quantize(AMOUNT_QUANTUM)


class _StrictPayload(BaseModel):
    model_config = ConfigDict(strict=True, frozen=True)


class _AddressStatsPayload(_StrictPayload):
    balance: int
    balance_usd: float


class _AddressDashboardPayload(_StrictPayload):
    address: _AddressStatsPayload
    transactions: list[str]


class _AddressResponsePayload(_StrictPayload):
    data: dict[str, _AddressDashboardPayload]


class _TransactionPayload(_StrictPayload):
    hash: str
    time: datetime
    output_total_usd: float
    fee_usd: float

    @field_validator("time", mode="before")
    @classmethod
    def parse_time(cls, v: Any) -> datetime:
        if not isinstance(v, str):
            raise ValueError("time must be a string")
        return datetime.strptime(v, BLOCKCHAIR_TIME_FORMAT).replace(tzinfo=UTC)


class _TransactionDashboardPayload(_StrictPayload):
    transaction: _TransactionPayload


class _TransactionsResponsePayload(_StrictPayload):
    data: dict[str, _TransactionDashboardPayload]


@dataclass(frozen=True)
class AddressSnapshot:
    """Upstream view of an address: balance plus one page of transaction ids.

    `txn_ids` is ordered newest first.
    """

    address: str
    balance: Decimal
    balance_satoshi: int
    txn_ids: tuple[str, ...]

    @property
    def newest_txn_id(self) -> str | None:
        return self.txn_ids[0] if self.txn_ids else None


@dataclass(frozen=True)
class TransactionDetail:
    """Detail of a single on-chain transaction."""

    txn_hash: str
    timestamp: datetime
    amount: Decimal
    fee: Decimal


def decode_address_snapshot(payload: Any, *, address: str) -> AddressSnapshot:
    """Decode a /dashboards/address response.

    Raises:
        MalformedDataError: If the payload does not match the schema or does
            not describe the requested address.
    """
    try:
        parsed = _AddressResponsePayload.model_validate(payload)
    except ValidationError as e:
        raise MalformedDataError(
            f"Unexpected address snapshot shape: {e.error_count()} validation error(s)",
            address=address,
            stage=SyncStage.SNAPSHOT,
        ) from e

    dashboard = parsed.data.get(address)
    if dashboard is None:
        raise MalformedDataError(
            "Address snapshot does not contain the requested address",
            address=address,
            stage=SyncStage.SNAPSHOT,
        )

    if len(set(dashboard.transactions)) != len(dashboard.transactions):
        raise MalformedDataError(
            "Address snapshot lists a transaction id twice",
            address=address,
            stage=SyncStage.SNAPSHOT,
        )

    return AddressSnapshot(
        address=address,
        balance=_to_decimal(dashboard.address.balance_usd),
        balance_satoshi=dashboard.address.balance,
        txn_ids=tuple(dashboard.transactions),
    )


def decode_transaction_details(
    payload: Any,
    *,
    requested: Sequence[str],
) -> dict[str, TransactionDetail]:
    """Decode a /dashboards/transactions response for the requested hashes.

    Every requested hash must be present, no unrequested hash may appear, and
    each entry's inner hash must equal its key.

    Raises:
        MalformedDataError: On any shape or identity mismatch.
    """
    try:
        parsed = _TransactionsResponsePayload.model_validate(payload)
    except ValidationError as e:
        raise MalformedDataError(
            f"Unexpected transaction details shape: {e.error_count()} validation error(s)",
            stage=SyncStage.FETCH,
        ) from e

    wanted = set(requested)
    returned = set(parsed.data)
    if returned != wanted:
        missing = sorted(wanted - returned)
        unexpected = sorted(returned - wanted)
        raise MalformedDataError(
            f"Transaction details do not match request (missing={missing}, unexpected={unexpected})",
            stage=SyncStage.FETCH,
        )

    details: dict[str, TransactionDetail] = {}
    for key, dashboard in parsed.data.items():
        txn = dashboard.transaction
        if txn.hash != key:
            raise MalformedDataError(
                f"Transaction detail keyed {key} describes {txn.hash}",
                stage=SyncStage.FETCH,
            )
        details[key] = TransactionDetail(
            txn_hash=txn.hash,
            timestamp=txn.time,
            amount=_to_decimal(txn.output_total_usd),
            fee=_to_decimal(txn.fee_usd),
        )
    return details
