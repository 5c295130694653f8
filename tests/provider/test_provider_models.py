"""Tests for Blockchair payload decoding."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from wallet_tracker.errors import MalformedDataError, SyncStage
from wallet_tracker.provider.models import decode_address_snapshot, decode_transaction_details

ADDRESS = "1BoatSLRHtKNngkdXEeobR76b53LETtpyT"


def _address_payload(**overrides) -> dict:
    dashboard = {
        "address": {"balance": 150000, "balance_usd": 99.95, "type": "pubkeyhash"},
        "transactions": ["c" * 64, "b" * 64, "a" * 64],
        "utxo": [],
    }
    dashboard.update(overrides)
    return {"data": {ADDRESS: dashboard}, "context": {"code": 200}}


def _txn(txn_hash: str, **overrides) -> dict:
    txn = {
        "hash": txn_hash,
        "time": "2024-02-29 23:59:59",
        "output_total_usd": 10.5,
        "fee_usd": 0.25,
        "block_id": 830000,
    }
    txn.update(overrides)
    return {"transaction": txn, "inputs": [], "outputs": []}


class TestDecodeAddressSnapshot:
    def test_valid_payload(self) -> None:
        snapshot = decode_address_snapshot(_address_payload(), address=ADDRESS)

        assert snapshot.balance == Decimal("99.95")
        assert snapshot.balance_satoshi == 150000
        assert snapshot.txn_ids == ("c" * 64, "b" * 64, "a" * 64)

    def test_values_rounded_to_store_scale(self) -> None:
        payload = _address_payload(address={"balance": 150000, "balance_usd": 99.123456789})

        snapshot = decode_address_snapshot(payload, address=ADDRESS)

        assert snapshot.balance == Decimal("99.12345679")
        assert snapshot.balance.as_tuple().exponent == -8

    def test_balance_as_string_rejected(self) -> None:
        payload = _address_payload(address={"balance": "150000", "balance_usd": 99.95})

        with pytest.raises(MalformedDataError) as exc_info:
            decode_address_snapshot(payload, address=ADDRESS)

        assert exc_info.value.stage is SyncStage.SNAPSHOT
        assert exc_info.value.address == ADDRESS

    def test_missing_transactions_rejected(self) -> None:
        payload = _address_payload()
        del payload["data"][ADDRESS]["transactions"]

        with pytest.raises(MalformedDataError):
            decode_address_snapshot(payload, address=ADDRESS)

    def test_duplicate_ids_rejected(self) -> None:
        payload = _address_payload(transactions=["a" * 64, "a" * 64])

        with pytest.raises(MalformedDataError, match="twice"):
            decode_address_snapshot(payload, address=ADDRESS)

    def test_null_data_rejected(self) -> None:
        with pytest.raises(MalformedDataError):
            decode_address_snapshot({"data": None}, address=ADDRESS)


class TestDecodeTransactionDetails:
    def test_valid_payload(self) -> None:
        payload = {"data": {"a" * 64: _txn("a" * 64), "b" * 64: _txn("b" * 64, fee_usd=0)}}

        details = decode_transaction_details(payload, requested=["a" * 64, "b" * 64])

        assert details["a" * 64].timestamp == datetime(2024, 2, 29, 23, 59, 59, tzinfo=UTC)
        assert details["a" * 64].amount == Decimal("10.5")
        assert details["b" * 64].fee == Decimal("0")

    def test_unrequested_hash_rejected(self) -> None:
        payload = {"data": {"a" * 64: _txn("a" * 64), "b" * 64: _txn("b" * 64)}}

        with pytest.raises(MalformedDataError, match="unexpected"):
            decode_transaction_details(payload, requested=["a" * 64])

    def test_inner_hash_mismatch_rejected(self) -> None:
        payload = {"data": {"a" * 64: _txn("b" * 64)}}

        with pytest.raises(MalformedDataError, match="describes"):
            decode_transaction_details(payload, requested=["a" * 64])

    def test_bad_time_format_rejected(self) -> None:
        payload = {"data": {"a" * 64: _txn("a" * 64, time="29/02/2024")}}

        with pytest.raises(MalformedDataError):
            decode_transaction_details(payload, requested=["a" * 64])

    def test_missing_amount_rejected(self) -> None:
        payload = {"data": {"a" * 64: _txn("a" * 64)}}
        del payload["data"]["a" * 64]["transaction"]["output_total_usd"]

        with pytest.raises(MalformedDataError) as exc_info:
            decode_transaction_details(payload, requested=["a" * 64])

        assert exc_info.value.stage is SyncStage.FETCH
