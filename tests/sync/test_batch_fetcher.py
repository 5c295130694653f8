"""Tests for chunked transaction detail retrieval."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from wallet_tracker.errors import (
    MalformedDataError,
    ProviderThrottledError,
    RateLimitExceeded,
    SyncStage,
    UpstreamError,
)
from wallet_tracker.provider.models import TransactionDetail
from wallet_tracker.sync.batch_fetcher import BatchFetcher, chunked, retry_once_on_throttle

ADDRESS = "bc1qtest"


def _ids(n: int) -> list[str]:
    return [f"{i:064x}" for i in range(n)]


def _details(ids: list[str]) -> dict[str, TransactionDetail]:
    return {
        txn_id: TransactionDetail(
            txn_hash=txn_id,
            timestamp=datetime(2024, 1, 1, tzinfo=UTC),
            amount=Decimal("1"),
            fee=Decimal("0.1"),
        )
        for txn_id in ids
    }


def _throttled() -> ProviderThrottledError:
    return ProviderThrottledError("throttled", stage=SyncStage.FETCH)


@pytest.fixture
def mock_client() -> MagicMock:
    """Client whose detail lookups echo the requested ids."""
    client = MagicMock()
    client.get_transaction_details = AsyncMock(side_effect=lambda ids: _details(list(ids)))
    return client


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


class TestChunked:
    def test_splits_with_remainder(self) -> None:
        assert [len(c) for c in chunked(_ids(25), 10)] == [10, 10, 5]

    def test_empty_input(self) -> None:
        assert chunked([], 10) == []

    def test_preserves_order(self) -> None:
        ids = _ids(12)
        assert [i for c in chunked(ids, 5) for i in c] == ids

    def test_rejects_non_positive_size(self) -> None:
        with pytest.raises(ValueError):
            chunked(_ids(3), 0)


class TestRetryOnceOnThrottle:
    async def test_success_first_try(self, sleep) -> None:
        operation = AsyncMock(return_value="ok")

        result = await retry_once_on_throttle(
            operation, cooldown_seconds=60, description="op", stage=SyncStage.FETCH, sleep=sleep
        )

        assert result == "ok"
        assert operation.await_count == 1
        sleep.assert_not_awaited()

    async def test_success_after_cooldown(self, sleep) -> None:
        operation = AsyncMock(side_effect=[_throttled(), "ok"])

        result = await retry_once_on_throttle(
            operation, cooldown_seconds=60, description="op", stage=SyncStage.FETCH, sleep=sleep
        )

        assert result == "ok"
        assert operation.await_count == 2
        sleep.assert_awaited_once_with(60)

    async def test_second_throttle_raises_rate_limit(self, sleep) -> None:
        operation = AsyncMock(side_effect=[_throttled(), _throttled()])

        with pytest.raises(RateLimitExceeded) as exc_info:
            await retry_once_on_throttle(
                operation,
                cooldown_seconds=60,
                description="op",
                address=ADDRESS,
                stage=SyncStage.SNAPSHOT,
                sleep=sleep,
            )

        assert exc_info.value.address == ADDRESS
        assert exc_info.value.stage is SyncStage.SNAPSHOT
        assert operation.await_count == 2

    async def test_other_errors_not_retried(self, sleep) -> None:
        operation = AsyncMock(side_effect=UpstreamError("HTTP 500"))

        with pytest.raises(UpstreamError):
            await retry_once_on_throttle(
                operation, cooldown_seconds=60, description="op", stage=SyncStage.FETCH, sleep=sleep
            )

        assert operation.await_count == 1
        sleep.assert_not_awaited()


class TestBatchFetcher:
    async def test_twenty_five_ids_take_three_calls(self, mock_client, sleep) -> None:
        ids = _ids(25)
        fetcher = BatchFetcher(mock_client, sleep=sleep)

        details = await fetcher.fetch(ids)

        sizes = [len(call.args[0]) for call in mock_client.get_transaction_details.await_args_list]
        assert sizes == [10, 10, 5]
        assert len(details) == 25
        assert set(details) == set(ids)

    async def test_chunks_requested_in_input_order(self, mock_client, sleep) -> None:
        ids = _ids(12)
        fetcher = BatchFetcher(mock_client, batch_size=5, sleep=sleep)

        await fetcher.fetch(ids)

        requested = [i for call in mock_client.get_transaction_details.await_args_list for i in call.args[0]]
        assert requested == ids

    async def test_empty_ids_make_no_calls(self, mock_client, sleep) -> None:
        fetcher = BatchFetcher(mock_client, sleep=sleep)

        assert await fetcher.fetch([]) == {}
        mock_client.get_transaction_details.assert_not_awaited()

    async def test_throttled_chunk_retried_after_cooldown(self, mock_client, sleep) -> None:
        ids = _ids(15)
        responses = [_details(ids[:10]), _throttled(), _details(ids[10:])]
        mock_client.get_transaction_details = AsyncMock(side_effect=responses)
        fetcher = BatchFetcher(mock_client, cooldown_seconds=30, sleep=sleep)

        details = await fetcher.fetch(ids)

        assert len(details) == 15
        assert mock_client.get_transaction_details.await_count == 3
        sleep.assert_awaited_once_with(30)

    async def test_throttled_twice_aborts_whole_fetch(self, mock_client, sleep) -> None:
        ids = _ids(25)
        responses = [_details(ids[:10]), _throttled(), _throttled()]
        mock_client.get_transaction_details = AsyncMock(side_effect=responses)
        fetcher = BatchFetcher(mock_client, sleep=sleep)

        with pytest.raises(RateLimitExceeded) as exc_info:
            await fetcher.fetch(ids, address=ADDRESS)

        assert exc_info.value.address == ADDRESS
        assert exc_info.value.stage is SyncStage.FETCH
        # The third chunk is never requested.
        assert mock_client.get_transaction_details.await_count == 3

    async def test_malformed_chunk_propagates_with_address(self, mock_client, sleep) -> None:
        mock_client.get_transaction_details = AsyncMock(
            side_effect=MalformedDataError("bad payload", stage=SyncStage.FETCH)
        )
        fetcher = BatchFetcher(mock_client, sleep=sleep)

        with pytest.raises(MalformedDataError) as exc_info:
            await fetcher.fetch(_ids(3), address=ADDRESS)

        assert exc_info.value.address == ADDRESS
        sleep.assert_not_awaited()

    def test_batch_size_bounded_by_provider_maximum(self, mock_client) -> None:
        with pytest.raises(ValueError):
            BatchFetcher(mock_client, batch_size=11)
