"""Blockchair API client with global rate limiting.

The provider enforces a single request quota shared by every endpoint, so
one RateLimiter paces all calls made through a client instance. Throttling
responses are surfaced as ProviderThrottledError and left to the caller to
retry; this client never retries on its own.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from typing import Any

import httpx

from wallet_tracker.config import PROVIDER_MAX_BATCH_SIZE, PROVIDER_MAX_PAGE_LIMIT
from wallet_tracker.errors import ProviderThrottledError, SyncStage, UpstreamError
from wallet_tracker.provider.models import (
    AddressSnapshot,
    TransactionDetail,
    decode_address_snapshot,
    decode_transaction_details,
)

logger = logging.getLogger(__name__)

# Constants
DEFAULT_BASE_URL = "https://api.blockchair.com/bitcoin"
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_REQUESTS_PER_SECOND = 0.5  # free tier: 30 requests/minute

# 402: daily/minute quota exhausted, 429: too many requests.
THROTTLE_STATUS_CODES = (402, 429)


class RateLimiter:
    """Minimum-interval rate limiter for API requests."""

    def __init__(self, max_requests_per_second: float = DEFAULT_REQUESTS_PER_SECOND) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests_per_second: Maximum requests allowed per second.
        """
        self._min_interval = 1.0 / max_requests_per_second
        self._last_request_time: float | None = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            if self._last_request_time is not None:
                elapsed = time.monotonic() - self._last_request_time
                if elapsed < self._min_interval:
                    await asyncio.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()


class BlockchairClient:
    """Read-only client for the Blockchair dashboards API.

    Example:
        ```python
        async with BlockchairClient() as client:
            snapshot = await client.get_address_snapshot("bc1q...")
            details = await client.get_transaction_details(snapshot.txn_ids[:10])
        ```
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        api_key: str | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        requests_per_second: float = DEFAULT_REQUESTS_PER_SECOND,
        page_limit: int = PROVIDER_MAX_PAGE_LIMIT,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the Blockchair client.

        Args:
            base_url: API root including the chain segment.
            api_key: Optional paid API key sent as the `key` query parameter.
            timeout: Per-request timeout in seconds.
            requests_per_second: Global pacing for all requests.
            page_limit: Transaction ids requested per address snapshot page.
            http_client: Pre-built httpx client (tests inject a mock transport).
        """
        if not 1 <= page_limit <= PROVIDER_MAX_PAGE_LIMIT:
            raise ValueError(f"page_limit must be between 1 and {PROVIDER_MAX_PAGE_LIMIT}")

        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._page_limit = page_limit
        self._rate_limiter = RateLimiter(requests_per_second)
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

        logger.info(
            "Initialized BlockchairClient with base_url=%s, rate_limit=%.2f req/s",
            self._base_url,
            requests_per_second,
        )

    @property
    def page_limit(self) -> int:
        return self._page_limit

    async def __aenter__(self) -> BlockchairClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def _get_json(self, path: str, *, params: dict[str, Any], address: str | None, stage: SyncStage) -> Any:
        if self._api_key:
            params = {**params, "key": self._api_key}

        await self._rate_limiter.acquire()
        url = f"{self._base_url}{path}"
        try:
            response = await self._http.get(url, params=params)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Request to {path} failed: {e}", address=address, stage=stage) from e

        if response.status_code in THROTTLE_STATUS_CODES:
            raise ProviderThrottledError(
                f"Provider throttled request to {path} (HTTP {response.status_code})",
                address=address,
                stage=stage,
            )
        if response.status_code != 200:
            raise UpstreamError(
                f"Provider returned HTTP {response.status_code} for {path}",
                address=address,
                stage=stage,
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"Provider returned non-JSON body for {path}", address=address, stage=stage) from e

    async def get_address_snapshot(self, address: str, *, offset: int = 0) -> AddressSnapshot:
        """Fetch balance and one page of transaction ids (newest first).

        Args:
            address: Public key of the address.
            offset: Page offset into the address history (0 = newest page).

        Raises:
            ProviderThrottledError: Provider signalled throttling.
            UpstreamError: Transport failure or unexpected status.
            MalformedDataError: Response does not match the schema.
        """
        payload = await self._get_json(
            f"/dashboards/address/{address}",
            params={"limit": self._page_limit, "offset": offset},
            address=address,
            stage=SyncStage.SNAPSHOT,
        )
        snapshot = decode_address_snapshot(payload, address=address)
        logger.debug(
            "Fetched snapshot for %s: %d txn ids (offset=%d)",
            address,
            len(snapshot.txn_ids),
            offset,
        )
        return snapshot

    async def get_transaction_details(self, txn_hashes: Sequence[str]) -> dict[str, TransactionDetail]:
        """Fetch transaction details for up to 10 hashes.

        Raises:
            ValueError: If more than 10 hashes (or none) are requested.
            ProviderThrottledError: Provider signalled throttling.
            UpstreamError: Transport failure or unexpected status.
            MalformedDataError: Response does not match the schema.
        """
        if not txn_hashes:
            raise ValueError("At least one transaction hash is required")
        if len(txn_hashes) > PROVIDER_MAX_BATCH_SIZE:
            raise ValueError(f"Cannot request more than {PROVIDER_MAX_BATCH_SIZE} transaction hashes at a time")

        payload = await self._get_json(
            f"/dashboards/transactions/{','.join(txn_hashes)}",
            params={},
            address=None,
            stage=SyncStage.FETCH,
        )
        return decode_transaction_details(payload, requested=txn_hashes)
