"""Pytest configuration and fixtures."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from wallet_tracker.provider.client import BlockchairClient
from wallet_tracker.storage.models import Base

BASE_URL = "https://api.blockchair.test/bitcoin"


class FakeBlockchair:
    """In-memory stand-in for the Blockchair dashboards API.

    Histories are kept newest first, the way the API pages them.
    """

    def __init__(self) -> None:
        self.balances: dict[str, float] = {}
        self.histories: dict[str, list[str]] = {}
        self.transactions: dict[str, dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []
        # 1-based request ordinal -> forced HTTP status
        self.forced_statuses: dict[int, int] = {}

    def add_transaction(
        self,
        address: str,
        txn_hash: str,
        *,
        time: datetime,
        amount: float = 100.0,
        fee: float = 0.5,
    ) -> None:
        self.histories.setdefault(address, []).insert(0, txn_hash)
        self.transactions[txn_hash] = {
            "block_id": 800000,
            "hash": txn_hash,
            "time": time.strftime("%Y-%m-%d %H:%M:%S"),
            "output_total": 123456,
            "output_total_usd": amount,
            "fee": 1000,
            "fee_usd": fee,
        }

    @property
    def detail_requests(self) -> list[list[str]]:
        return [
            r.url.path.rsplit("/", 1)[1].split(",")
            for r in self.requests
            if "/dashboards/transactions/" in r.url.path
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        forced = self.forced_statuses.get(len(self.requests))
        if forced is not None:
            return httpx.Response(forced, json={"data": None, "context": {"code": forced}})

        path = request.url.path
        if "/dashboards/address/" in path:
            address = path.rsplit("/", 1)[1]
            limit = int(request.url.params.get("limit", "100"))
            offset = int(request.url.params.get("offset", "0"))
            ids = self.histories.get(address, [])[offset : offset + limit]
            balance_usd = self.balances.get(address, 0.0)
            return httpx.Response(
                200,
                json={
                    "data": {
                        address: {
                            "address": {"balance": int(balance_usd * 1000), "balance_usd": balance_usd},
                            "transactions": ids,
                        }
                    },
                    "context": {"code": 200},
                },
            )
        if "/dashboards/transactions/" in path:
            hashes = path.rsplit("/", 1)[1].split(",")
            data = {h: {"transaction": self.transactions[h]} for h in hashes if h in self.transactions}
            return httpx.Response(200, json={"data": data, "context": {"code": 200}})
        return httpx.Response(404, json={"data": None, "context": {"code": 404}})


class FakeClock:
    """Deterministic UTC clock."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def blockchair() -> FakeBlockchair:
    """Fake provider with an empty history."""
    return FakeBlockchair()


@pytest.fixture
async def client(blockchair: FakeBlockchair):
    """Blockchair client wired to the fake provider."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(blockchair.handler))
    client = BlockchairClient(
        base_url=BASE_URL,
        requests_per_second=1000,
        http_client=http_client,
    )
    yield client
    await http_client.aclose()


@pytest.fixture
async def async_engine():
    """Create an async in-memory SQLite engine shared across sessions."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(bind=async_engine, expire_on_commit=False)


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed at a known instant."""
    return FakeClock(datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC))


@pytest.fixture
def sample_address() -> str:
    """Sample Bitcoin address for testing."""
    return "bc1qxy2kgdygjrsqtzq2n0yrf2493p83kkfjhx0wlh"
