"""SQLAlchemy models for persistent storage.

This module defines the database schema for tracked addresses and their
append-only transaction history.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import JSON, DateTime, Index, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class AddressModel(Base):
    """SQLAlchemy model for a tracked address.

    `last_txn_hash` is the sync cursor: the newest transaction id known as of
    the last successful reconciliation.
    """

    __tablename__ = "addresses"

    public_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    balance: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    last_txn_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )


class TransactionModel(Base):
    """SQLAlchemy model for a transaction as seen from one tracked address.

    Keyed by (txn_hash, public_key): a single on-chain transaction can touch
    several tracked addresses. Rows are never updated or deleted.
    """

    __tablename__ = "transactions"

    txn_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    public_key: Mapped[str] = mapped_column(String(128), primary_key=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    fee: Mapped[Decimal] = mapped_column(Numeric(24, 8), nullable=False)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    txn_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_transactions_public_key_ts", "public_key", "txn_timestamp"),
    )
