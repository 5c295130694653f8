"""Chunked transaction detail retrieval with throttle cooldown.

The provider's rate limit is global across all request types, so chunks are
fetched strictly one after another: concurrency would only reach the limit
sooner without raising throughput.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from wallet_tracker.config import PROVIDER_MAX_BATCH_SIZE
from wallet_tracker.errors import ProviderThrottledError, RateLimitExceeded, SyncStage, UpstreamError
from wallet_tracker.provider.client import BlockchairClient
from wallet_tracker.provider.models import TransactionDetail

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]

DEFAULT_COOLDOWN_SECONDS = 60.0


def chunked(ids: Sequence[str], size: int) -> list[list[str]]:
    """Split `ids` into consecutive chunks of at most `size` items."""
    if size < 1:
        raise ValueError("size must be positive")
    return [list(ids[i : i + size]) for i in range(0, len(ids), size)]


async def retry_once_on_throttle(
    operation: Callable[[], Awaitable[T]],
    *,
    cooldown_seconds: float,
    description: str,
    address: str | None = None,
    stage: SyncStage,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run `operation`; on a throttling response wait once and retry once.

    Raises:
        RateLimitExceeded: The retry was throttled as well.
    """
    try:
        return await operation()
    except ProviderThrottledError:
        logger.warning(
            "%s throttled; cooling down for %.1f seconds before a single retry",
            description,
            cooldown_seconds,
        )
    await sleep(cooldown_seconds)

    try:
        return await operation()
    except ProviderThrottledError as e:
        raise RateLimitExceeded(
            f"{description} still throttled after {cooldown_seconds:.0f}s cooldown",
            address=address,
            stage=stage,
        ) from e


class BatchFetcher:
    """Fetches transaction details in provider-sized chunks.

    Example:
        ```python
        fetcher = BatchFetcher(client)
        details = await fetcher.fetch(["hash1", "hash2", ...])
        ```
    """

    def __init__(
        self,
        client: BlockchairClient,
        *,
        batch_size: int = PROVIDER_MAX_BATCH_SIZE,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize the fetcher.

        Args:
            client: Provider client used for detail lookups.
            batch_size: Hashes per request (at most the provider maximum of 10).
            cooldown_seconds: Wait before retrying a throttled chunk.
            sleep: Awaitable sleep, injectable for tests.
        """
        if not 1 <= batch_size <= PROVIDER_MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {PROVIDER_MAX_BATCH_SIZE}")
        self._client = client
        self._batch_size = batch_size
        self._cooldown_seconds = cooldown_seconds
        self._sleep = sleep

    @property
    def cooldown_seconds(self) -> float:
        return self._cooldown_seconds

    async def fetch(self, ids: Sequence[str], *, address: str | None = None) -> dict[str, TransactionDetail]:
        """Retrieve details for every id, chunk by chunk, in input order.

        Either every chunk succeeds and the merged mapping is returned, or the
        first failure is raised and nothing is returned.

        Args:
            ids: Transaction hashes to look up.
            address: Address being synced, for error context only.

        Raises:
            RateLimitExceeded: A chunk was throttled twice.
            UpstreamError: Any other provider failure.
        """
        chunks = chunked(ids, self._batch_size)
        merged: dict[str, TransactionDetail] = {}

        for index, chunk in enumerate(chunks, start=1):
            logger.debug("Fetching batch %d/%d (%d hashes)", index, len(chunks), len(chunk))

            async def _fetch_chunk(chunk: list[str] = chunk) -> dict[str, TransactionDetail]:
                return await self._client.get_transaction_details(chunk)

            try:
                details = await retry_once_on_throttle(
                    _fetch_chunk,
                    cooldown_seconds=self._cooldown_seconds,
                    description=f"Transaction batch {index}/{len(chunks)}",
                    address=address,
                    stage=SyncStage.FETCH,
                    sleep=self._sleep,
                )
            except UpstreamError as e:
                if e.address is None:
                    e.address = address
                raise
            merged.update(details)

        logger.debug("Fetched %d transaction details in %d batch(es)", len(merged), len(chunks))
        return merged
