"""Repository pattern implementations for data access.

This module provides data access abstractions for tracked addresses and
their transaction history.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from wallet_tracker.storage.models import AddressModel, TransactionModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on DateTime(timezone=True) columns.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


@dataclass
class AddressRecord:
    """Data transfer object for tracked addresses."""

    public_key: str
    balance: Decimal
    created_at: datetime
    updated_at: datetime
    last_txn_hash: str | None = None

    @classmethod
    def from_model(cls, model: AddressModel) -> AddressRecord:
        return cls(
            public_key=model.public_key,
            balance=model.balance,
            created_at=_as_utc(model.created_at),
            updated_at=_as_utc(model.updated_at),
            last_txn_hash=model.last_txn_hash,
        )

    def to_dict(self) -> dict[str, str | None]:
        return {
            "public_key": self.public_key,
            "balance": str(self.balance),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "last_txn_hash": self.last_txn_hash,
        }


@dataclass
class TransactionRecord:
    """Data transfer object for a transaction seen from one address."""

    txn_hash: str
    public_key: str
    amount: Decimal
    fee: Decimal
    txn_timestamp: datetime
    created_at: datetime
    tags: tuple[str, ...] = field(default_factory=tuple)

    @property
    def key(self) -> tuple[str, str]:
        return (self.txn_hash, self.public_key)

    @classmethod
    def from_model(cls, model: TransactionModel) -> TransactionRecord:
        return cls(
            txn_hash=model.txn_hash,
            public_key=model.public_key,
            amount=model.amount,
            fee=model.fee,
            txn_timestamp=_as_utc(model.txn_timestamp),
            created_at=_as_utc(model.created_at),
            tags=tuple(model.tags or ()),
        )

    def to_dict(self) -> dict[str, str | list[str]]:
        return {
            "txn_hash": self.txn_hash,
            "public_key": self.public_key,
            "amount": str(self.amount),
            "fee": str(self.fee),
            "txn_timestamp": self.txn_timestamp.isoformat(),
            "created_at": self.created_at.isoformat(),
            "tags": list(self.tags),
        }


class AddressRepository:
    """Repository for tracked addresses."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, public_key: str) -> AddressRecord | None:
        result = await self.session.execute(select(AddressModel).where(AddressModel.public_key == public_key))
        model = result.scalar_one_or_none()
        return AddressRecord.from_model(model) if model else None

    async def insert(self, record: AddressRecord) -> AddressRecord:
        """Insert a newly tracked address.

        Raises:
            IntegrityError if the address already exists.
        """
        model = AddressModel(
            public_key=record.public_key,
            balance=record.balance,
            last_txn_hash=record.last_txn_hash,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
        self.session.add(model)
        await self.session.flush()
        return record

    async def compare_and_update(self, record: AddressRecord, *, expected_cursor: str | None) -> bool:
        """Update an address only if its cursor still equals `expected_cursor`.

        Returns:
            True if the row was updated, False if the cursor moved (or the row
            is gone) since it was read.
        """
        cursor_matches = (
            AddressModel.last_txn_hash.is_(None)
            if expected_cursor is None
            else AddressModel.last_txn_hash == expected_cursor
        )
        result = await self.session.execute(
            update(AddressModel)
            .where(AddressModel.public_key == record.public_key, cursor_matches)
            .values(
                balance=record.balance,
                last_txn_hash=record.last_txn_hash,
                updated_at=record.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        # SQLAlchemy Result does have rowcount but typing doesn't reflect it
        return (result.rowcount or 0) == 1  # type: ignore[attr-defined]


class TransactionRepository:
    """Repository for append-only transaction records."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, txn_hash: str, public_key: str) -> TransactionRecord | None:
        result = await self.session.execute(
            select(TransactionModel).where(
                TransactionModel.txn_hash == txn_hash,
                TransactionModel.public_key == public_key,
            )
        )
        model = result.scalar_one_or_none()
        return TransactionRecord.from_model(model) if model else None

    async def list_for_address(self, public_key: str) -> list[TransactionRecord]:
        """List stored transactions for an address, newest first."""
        result = await self.session.execute(
            select(TransactionModel)
            .where(TransactionModel.public_key == public_key)
            .order_by(TransactionModel.txn_timestamp.desc(), TransactionModel.txn_hash.asc())
        )
        return [TransactionRecord.from_model(m) for m in result.scalars().all()]

    async def existing_hashes(self, public_key: str, txn_hashes: Iterable[str]) -> set[str]:
        """Return the subset of `txn_hashes` already stored for `public_key`."""
        wanted = list(txn_hashes)
        if not wanted:
            return set()
        result = await self.session.execute(
            select(TransactionModel.txn_hash).where(
                TransactionModel.public_key == public_key,
                TransactionModel.txn_hash.in_(wanted),
            )
        )
        return set(result.scalars().all())

    async def insert_many(self, records: Sequence[TransactionRecord]) -> int:
        """Insert transaction records, skipping keys that already exist.

        Returns the number of attempted inserts (not the number of newly created
        rows), for portability across dialects.
        """
        if not records:
            return 0

        rows = [
            {
                "txn_hash": r.txn_hash,
                "public_key": r.public_key,
                "amount": r.amount,
                "fee": r.fee,
                "tags": sorted(set(r.tags)),
                "txn_timestamp": r.txn_timestamp,
                "created_at": r.created_at,
            }
            for r in records
        ]

        index_cols = ["txn_hash", "public_key"]
        if self.session.get_bind().dialect.name == "postgresql":
            stmt = pg_insert(TransactionModel).values(rows).on_conflict_do_nothing(index_elements=index_cols)
        else:
            stmt = sqlite_insert(TransactionModel).values(rows).on_conflict_do_nothing(index_elements=index_cols)
        await self.session.execute(stmt)
        await self.session.flush()
        return len(records)
