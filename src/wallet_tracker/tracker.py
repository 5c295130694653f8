"""Wallet tracker facade.

Exposes the user-facing operations (add an address, read its balance or
transactions, force a sync, detect transfers) on top of the sync engine, the
store and the transfer detector. Reads of balance and transactions always
reconcile first, so they reflect the provider's latest state.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import timedelta
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wallet_tracker.config import Settings
from wallet_tracker.detector.models import WalletTransaction
from wallet_tracker.detector.transfers import TransferDetector, TransferDetectorConfig
from wallet_tracker.errors import AddressNotTrackedError, StoreError, SyncStage
from wallet_tracker.provider.client import BlockchairClient
from wallet_tracker.storage.database import DatabaseManager
from wallet_tracker.storage.repos import (
    AddressRecord,
    AddressRepository,
    TransactionRecord,
    TransactionRepository,
)
from wallet_tracker.sync.batch_fetcher import BatchFetcher
from wallet_tracker.sync.engine import GapPolicy, SyncEngine, SyncResult

logger = logging.getLogger(__name__)


class WalletTracker:
    """Entry point for tracking addresses and detecting transfers."""

    def __init__(
        self,
        engine: SyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        detector: TransferDetector | None = None,
        sync_timeout: float | None = None,
    ) -> None:
        self._engine = engine
        self._session_factory = session_factory
        self._detector = detector or TransferDetector()
        self._sync_timeout = sync_timeout

    @property
    def engine(self) -> SyncEngine:
        return self._engine

    async def _get_address(self, address: str) -> AddressRecord | None:
        try:
            async with self._session_factory() as session:
                return await AddressRepository(session).get(address)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read address: {e}", address=address, stage=SyncStage.READ) from e

    async def _require_tracked(self, address: str) -> None:
        if await self._get_address(address) is None:
            raise AddressNotTrackedError("Address is not tracked; add it first", address=address)

    async def add_address(self, address: str) -> AddressRecord:
        """Start tracking an address, importing its latest page of history.

        Adding an already tracked address returns the stored record unchanged.
        """
        existing = await self._get_address(address)
        if existing is not None:
            logger.debug("Address %s already tracked", address)
            return existing
        result = await self._engine.reconcile(address, timeout=self._sync_timeout)
        return result.address

    async def sync_address(self, address: str) -> SyncResult:
        """Reconcile an address with the provider (first sync if unseen)."""
        return await self._engine.reconcile(address, timeout=self._sync_timeout)

    async def get_balance(self, address: str) -> Decimal:
        """Sync a tracked address and return its current balance."""
        await self._require_tracked(address)
        result = await self._engine.reconcile(address, timeout=self._sync_timeout)
        return result.address.balance

    async def list_transactions(self, address: str) -> list[TransactionRecord]:
        """Sync a tracked address and return all stored transactions, newest first."""
        await self._require_tracked(address)
        await self._engine.reconcile(address, timeout=self._sync_timeout)
        try:
            async with self._session_factory() as session:
                return await TransactionRepository(session).list_for_address(address)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list transactions: {e}", address=address, stage=SyncStage.READ) from e

    def detect_transfers(self, txns: Sequence[WalletTransaction]) -> dict[str, str]:
        """Infer transfers between the supplied wallets' transactions."""
        return self._detector.detect(txns)


@asynccontextmanager
async def open_tracker(settings: Settings) -> AsyncIterator[WalletTracker]:
    """Build a WalletTracker from settings and release its resources on exit."""
    db = DatabaseManager(settings.database.url)
    provider = settings.provider
    client = BlockchairClient(
        base_url=provider.base_url,
        api_key=provider.api_key.get_secret_value() if provider.api_key else None,
        timeout=provider.request_timeout_seconds,
        requests_per_second=provider.requests_per_second,
        page_limit=provider.page_limit,
    )
    fetcher = BatchFetcher(
        client,
        batch_size=provider.batch_size,
        cooldown_seconds=provider.throttle_cooldown_seconds,
    )
    engine = SyncEngine(
        client,
        db.session_factory,
        batch_fetcher=fetcher,
        gap_policy=GapPolicy(settings.sync.gap_policy),
        cooldown_seconds=provider.throttle_cooldown_seconds,
    )
    detector = TransferDetector(
        config=TransferDetectorConfig(
            window=timedelta(seconds=settings.transfers.window_seconds),
            amount_tolerance=settings.transfers.amount_tolerance,
        )
    )
    try:
        yield WalletTracker(
            engine,
            db.session_factory,
            detector=detector,
            sync_timeout=settings.sync.timeout_seconds,
        )
    finally:
        await client.aclose()
        await db.dispose()
