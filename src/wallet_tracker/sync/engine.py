"""Address reconciliation engine.

One reconciliation pass mirrors the provider's current view of an address
into the store:

1. read the stored address (absent means UNSEEN, a first sync)
2. fetch the upstream snapshot
3. select the ids newer than the stored cursor
4. fetch their details in batches
5. write the new transactions and the updated address in one transaction

Nothing touches the store before step 5, so a pass that fails or is
cancelled earlier leaves no trace. The write in step 5 is a compare-and-swap:
a new address is INSERTed (a concurrent first sync hits the primary key), a
tracked address is UPDATEd only while its cursor still matches what step 1
read.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wallet_tracker.errors import (
    ConcurrentUpdateError,
    GapDetectedError,
    MalformedDataError,
    StoreError,
    SyncStage,
)
from wallet_tracker.provider.client import BlockchairClient
from wallet_tracker.provider.models import AddressSnapshot, TransactionDetail
from wallet_tracker.storage.repos import (
    AddressRecord,
    AddressRepository,
    TransactionRecord,
    TransactionRepository,
)
from wallet_tracker.sync.batch_fetcher import (
    DEFAULT_COOLDOWN_SECONDS,
    BatchFetcher,
    Sleep,
    retry_once_on_throttle,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class AddressState(str, Enum):
    """Lifecycle of an address in the local store."""

    UNSEEN = "unseen"
    TRACKED = "tracked"


class GapPolicy(str, Enum):
    """What to do when the stored cursor is not on the returned snapshot page."""

    RAISE = "raise"
    RESYNC = "resync"


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one reconciliation pass.

    `state` is the address lifecycle state observed before the pass.
    """

    address: AddressRecord
    new_transactions: tuple[TransactionRecord, ...]
    state: AddressState


@dataclass
class SyncStats:
    """Statistics across reconciliation passes."""

    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    transactions_written: int = 0
    last_sync_time: datetime | None = None
    last_sync_duration_seconds: float = 0.0
    last_error: str | None = None


def select_new_txn_ids(
    txn_ids: Sequence[str],
    cursor: str | None,
    *,
    address: str,
    gap_policy: GapPolicy = GapPolicy.RAISE,
) -> list[str]:
    """Return the ids newer than `cursor`, preserving newest-first order.

    With no cursor every id on the page is new. With a cursor at position k
    the first k ids are new. A cursor missing from the page either raises
    GapDetectedError or, under GapPolicy.RESYNC, treats the whole page as new.
    """
    if cursor is None:
        return list(txn_ids)

    try:
        position = txn_ids.index(cursor)
    except ValueError:
        logger.warning(
            "Cursor %s for %s not found in snapshot page of %d ids (gap policy: %s)",
            cursor,
            address,
            len(txn_ids),
            gap_policy.value,
        )
        if gap_policy is GapPolicy.RESYNC:
            return list(txn_ids)
        raise GapDetectedError(
            f"Stored cursor {cursor} is not on the returned snapshot page",
            address=address,
            cursor=cursor,
        ) from None

    return list(txn_ids[:position])


class SyncEngine:
    """Reconciles tracked addresses against the Blockchair API.

    Example:
        ```python
        engine = SyncEngine(client, db.session_factory)
        result = await engine.reconcile("bc1q...")
        print(result.address.balance, len(result.new_transactions))
        ```
    """

    def __init__(
        self,
        client: BlockchairClient,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        batch_fetcher: BatchFetcher | None = None,
        gap_policy: GapPolicy = GapPolicy.RAISE,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize the sync engine.

        Args:
            client: Provider client for snapshots and details.
            session_factory: Factory for store sessions.
            batch_fetcher: Detail fetcher (defaults to one over `client`).
            gap_policy: Behaviour when the cursor is missing from the page.
            cooldown_seconds: Wait before retrying a throttled snapshot.
            clock: Source of the current UTC time.
            sleep: Awaitable sleep, injectable for tests.
        """
        self._client = client
        self._session_factory = session_factory
        self._fetcher = batch_fetcher or BatchFetcher(client, cooldown_seconds=cooldown_seconds, sleep=sleep)
        self._gap_policy = gap_policy
        self._cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._sleep = sleep
        self._stats = SyncStats()

    @property
    def stats(self) -> SyncStats:
        return self._stats

    @property
    def gap_policy(self) -> GapPolicy:
        return self._gap_policy

    async def reconcile(self, address: str, *, timeout: float | None = None) -> SyncResult:
        """Run one reconciliation pass for `address`.

        Args:
            address: Public key to sync.
            timeout: Optional deadline in seconds for the whole pass.

        Returns:
            The stored address state and the transactions written by this pass.

        Raises:
            UpstreamError: Provider failure (including RateLimitExceeded and
                MalformedDataError).
            GapDetectedError: Cursor missing from the page under GapPolicy.RAISE.
            StoreError: Store failure; ConcurrentUpdateError when a concurrent
                sync of the same address won.
            TimeoutError: The deadline elapsed; nothing was written.
        """
        started = time.monotonic()
        self._stats.total_syncs += 1
        try:
            async with asyncio.timeout(timeout):
                result = await self._reconcile(address)
        except BaseException as e:
            self._stats.failed_syncs += 1
            self._stats.last_error = str(e) or type(e).__name__
            raise
        finally:
            self._stats.last_sync_duration_seconds = time.monotonic() - started

        self._stats.successful_syncs += 1
        self._stats.transactions_written += len(result.new_transactions)
        self._stats.last_sync_time = self._clock()
        return result

    async def _reconcile(self, address: str) -> SyncResult:
        existing = await self._read_address(address)
        state = AddressState.UNSEEN if existing is None else AddressState.TRACKED
        cursor = existing.last_txn_hash if existing else None

        snapshot = await retry_once_on_throttle(
            lambda: self._client.get_address_snapshot(address),
            cooldown_seconds=self._cooldown_seconds,
            description=f"Snapshot of {address}",
            address=address,
            stage=SyncStage.SNAPSHOT,
            sleep=self._sleep,
        )

        new_ids = select_new_txn_ids(snapshot.txn_ids, cursor, address=address, gap_policy=self._gap_policy)
        details = await self._fetcher.fetch(new_ids, address=address) if new_ids else {}

        now = self._clock()
        records = self._build_transaction_records(address, new_ids, details, now=now)
        updated = self._build_address_record(address, snapshot, existing, now=now)

        written = await self._write(updated, records, existing=existing)

        logger.info(
            "Synced %s (%s): %d new transaction(s), balance=%s, cursor=%s",
            address,
            state.value,
            len(written),
            updated.balance,
            updated.last_txn_hash,
        )
        return SyncResult(address=updated, new_transactions=tuple(written), state=state)

    async def _read_address(self, address: str) -> AddressRecord | None:
        try:
            async with self._session_factory() as session:
                return await AddressRepository(session).get(address)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read address: {e}", address=address, stage=SyncStage.READ) from e

    @staticmethod
    def _build_transaction_records(
        address: str,
        new_ids: Sequence[str],
        details: dict[str, TransactionDetail],
        *,
        now: datetime,
    ) -> list[TransactionRecord]:
        records: list[TransactionRecord] = []
        for txn_id in new_ids:
            detail = details.get(txn_id)
            if detail is None:
                raise MalformedDataError(
                    f"Provider returned no detail for transaction {txn_id}",
                    address=address,
                    stage=SyncStage.FETCH,
                )
            records.append(
                TransactionRecord(
                    txn_hash=detail.txn_hash,
                    public_key=address,
                    amount=detail.amount,
                    fee=detail.fee,
                    txn_timestamp=detail.timestamp,
                    created_at=now,
                )
            )
        return records

    @staticmethod
    def _build_address_record(
        address: str,
        snapshot: AddressSnapshot,
        existing: AddressRecord | None,
        *,
        now: datetime,
    ) -> AddressRecord:
        if existing is None:
            return AddressRecord(
                public_key=address,
                balance=snapshot.balance,
                created_at=now,
                updated_at=now,
                last_txn_hash=snapshot.newest_txn_id,
            )

        # An empty page (only reachable under RESYNC) must not erase the cursor.
        cursor = snapshot.newest_txn_id or existing.last_txn_hash
        changed = snapshot.balance != existing.balance or cursor != existing.last_txn_hash
        return AddressRecord(
            public_key=address,
            balance=snapshot.balance,
            created_at=existing.created_at,
            updated_at=now if changed else existing.updated_at,
            last_txn_hash=cursor,
        )

    async def _write(
        self,
        updated: AddressRecord,
        records: list[TransactionRecord],
        *,
        existing: AddressRecord | None,
    ) -> list[TransactionRecord]:
        address = updated.public_key
        try:
            async with self._session_factory() as session, session.begin():
                txn_repo = TransactionRepository(session)
                already_stored = await txn_repo.existing_hashes(address, (r.txn_hash for r in records))
                fresh = [r for r in records if r.txn_hash not in already_stored]
                await txn_repo.insert_many(fresh)

                addr_repo = AddressRepository(session)
                if existing is None:
                    try:
                        await addr_repo.insert(updated)
                    except IntegrityError as e:
                        raise ConcurrentUpdateError(
                            "Address was created by a concurrent sync",
                            address=address,
                            stage=SyncStage.WRITE,
                        ) from e
                elif not await addr_repo.compare_and_update(updated, expected_cursor=existing.last_txn_hash):
                    raise ConcurrentUpdateError(
                        "Address cursor moved during sync; a concurrent sync won",
                        address=address,
                        stage=SyncStage.WRITE,
                    )
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to write sync result: {e}", address=address, stage=SyncStage.WRITE) from e
        return fresh
