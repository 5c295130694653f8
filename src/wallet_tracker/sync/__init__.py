"""Sync layer - Incremental reconciliation of addresses against the provider."""

from wallet_tracker.sync.batch_fetcher import BatchFetcher, chunked, retry_once_on_throttle
from wallet_tracker.sync.engine import (
    AddressState,
    GapPolicy,
    SyncEngine,
    SyncResult,
    SyncStats,
    select_new_txn_ids,
)

__all__ = [
    "AddressState",
    "BatchFetcher",
    "GapPolicy",
    "SyncEngine",
    "SyncResult",
    "SyncStats",
    "chunked",
    "retry_once_on_throttle",
    "select_new_txn_ids",
]
