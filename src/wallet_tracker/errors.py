"""Error taxonomy shared by the provider client, sync engine and store.

Every error carries enough context (address, stage) to diagnose a failed
sync without retrying blindly. Nothing here is ever swallowed: a sync either
commits its single atomic write or raises one of these.
"""

from __future__ import annotations

from enum import Enum


class SyncStage(str, Enum):
    """Stage of a reconciliation pass at which an error occurred."""

    READ = "read"
    SNAPSHOT = "snapshot"
    FETCH = "fetch"
    WRITE = "write"


class WalletTrackerError(Exception):
    """Base exception for all wallet tracker errors."""

    def __init__(
        self,
        message: str,
        *,
        address: str | None = None,
        stage: SyncStage | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.address = address
        self.stage = stage

    def __str__(self) -> str:
        context = []
        if self.address is not None:
            context.append(f"address={self.address}")
        if self.stage is not None:
            context.append(f"stage={self.stage.value}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"

    def to_dict(self) -> dict[str, str | None]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "address": self.address,
            "stage": self.stage.value if self.stage else None,
        }


class AddressNotTrackedError(WalletTrackerError):
    """Raised when an operation requires an address that was never synced."""


class UpstreamError(WalletTrackerError):
    """Raised on network failures or unexpected responses from the provider."""


class ProviderThrottledError(UpstreamError):
    """Raised when the provider answers with a throttling status (retryable once)."""


class RateLimitExceeded(UpstreamError):
    """Raised when a request is still throttled after its single cooldown retry."""


class MalformedDataError(UpstreamError):
    """Raised when a provider payload does not match the expected schema."""


class GapDetectedError(WalletTrackerError):
    """Raised when the stored cursor is not present on the returned snapshot page."""

    def __init__(self, message: str, *, address: str, cursor: str) -> None:
        super().__init__(message, address=address, stage=SyncStage.SNAPSHOT)
        self.cursor = cursor


class StoreError(WalletTrackerError):
    """Raised when a store read or write fails."""


class ConcurrentUpdateError(StoreError):
    """Raised when a conditional address update loses to a concurrent sync."""
