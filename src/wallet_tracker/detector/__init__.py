"""Detection layer - Cross-wallet transfer inference."""

from wallet_tracker.detector.models import TransferDirection, WalletTransaction
from wallet_tracker.detector.transfers import TransferDetector, TransferDetectorConfig

__all__ = [
    "TransferDetector",
    "TransferDetectorConfig",
    "TransferDirection",
    "WalletTransaction",
]
