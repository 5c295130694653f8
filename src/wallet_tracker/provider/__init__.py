"""Upstream provider layer - Blockchair API access and payload schemas."""

from wallet_tracker.provider.client import BlockchairClient, RateLimiter
from wallet_tracker.provider.models import (
    AddressSnapshot,
    TransactionDetail,
    decode_address_snapshot,
    decode_transaction_details,
)

__all__ = [
    "AddressSnapshot",
    "BlockchairClient",
    "RateLimiter",
    "TransactionDetail",
    "decode_address_snapshot",
    "decode_transaction_details",
]
