"""Data models for the transfer detector."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

# Legacy payload timestamps look like "2022-03-01 14:05:09 UTC".
LEGACY_TIME_FORMAT = "%Y-%m-%d %H:%M:%S UTC"


class TransferDirection(str, Enum):
    """Direction of funds relative to the owning wallet."""

    IN = "in"
    OUT = "out"


def _parse_timestamp(raw: Any) -> datetime:
    if not isinstance(raw, str):
        raise ValueError("time must be a string")
    try:
        return datetime.strptime(raw, LEGACY_TIME_FORMAT).replace(tzinfo=UTC)
    except ValueError:
        pass
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        raise ValueError(f"time must carry a timezone: {raw!r}")
    return parsed.astimezone(UTC)


def _parse_amount(raw: Any) -> Decimal:
    if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
        raise ValueError("amount must be a number")
    try:
        amount = Decimal(str(raw))
    except InvalidOperation as e:
        raise ValueError(f"amount is not a number: {raw!r}") from e
    if not amount.is_finite():
        raise ValueError(f"amount must be finite: {raw!r}")
    return amount


@dataclass(frozen=True)
class WalletTransaction:
    """A transaction on one of a user's wallets, as supplied by the caller."""

    txn_id: str
    wallet_id: str
    direction: TransferDirection
    timestamp: datetime
    amount: Decimal

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WalletTransaction:
        """Create a WalletTransaction from a request payload.

        Expects keys `id`, `wallet`, `flow` (`in`/`out`), `time` and `amount`.

        Raises:
            ValueError: If a key is missing or has the wrong shape.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Transaction payload must be an object, got {type(data).__name__}")
        missing = [k for k in ("id", "wallet", "flow", "time", "amount") if k not in data]
        if missing:
            raise ValueError(f"Transaction payload missing keys: {missing}")
        if not isinstance(data["id"], str) or not isinstance(data["wallet"], str):
            raise ValueError("id and wallet must be strings")

        return cls(
            txn_id=data["id"],
            wallet_id=data["wallet"],
            direction=TransferDirection(data["flow"]),
            timestamp=_parse_timestamp(data["time"]),
            amount=_parse_amount(data["amount"]),
        )
