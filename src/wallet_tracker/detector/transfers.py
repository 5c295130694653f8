"""Cross-wallet transfer detector.

Pairs an outbound transaction on one wallet with an inbound transaction of
the same amount on another wallet shortly afterwards. Sorting by
(timestamp, amount) keeps correlated transactions adjacent, so each outbound
only scans the inbound candidates inside its time window.
"""

from __future__ import annotations

import bisect
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from wallet_tracker.detector.models import TransferDirection, WalletTransaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferDetectorConfig:
    window: timedelta = timedelta(minutes=5)
    amount_tolerance: Decimal = Decimal("0")


class TransferDetector:
    """Greedy one-to-one matcher of outbound/inbound wallet transactions."""

    def __init__(self, *, config: TransferDetectorConfig | None = None) -> None:
        self._cfg = config or TransferDetectorConfig()
        if self._cfg.window < timedelta(0):
            raise ValueError("window must be non-negative")
        if self._cfg.amount_tolerance < 0:
            raise ValueError("amount_tolerance must be non-negative")

    @property
    def config(self) -> TransferDetectorConfig:
        return self._cfg

    def detect(self, txns: Sequence[WalletTransaction]) -> dict[str, str]:
        """Infer probable transfers.

        For each outbound transaction (in time order) the chosen inbound is the
        unmatched one on a different wallet within the window whose amount is
        within tolerance, preferring the smallest time delta, then the smallest
        amount difference, then the earliest sorted position.

        Returns:
            Mapping of outbound transaction id to inbound transaction id.
        """
        ordered = sorted(txns, key=lambda t: (t.timestamp, t.amount))
        timestamps = [t.timestamp for t in ordered]
        consumed: set[int] = set()
        matches: dict[str, str] = {}

        for i, out_txn in enumerate(ordered):
            if out_txn.direction is not TransferDirection.OUT or i in consumed:
                continue

            deadline = out_txn.timestamp + self._cfg.window
            best: tuple[timedelta, Decimal, int] | None = None

            # Inbounds at the same instant may sort before the outbound.
            j = bisect.bisect_left(timestamps, out_txn.timestamp)
            while j < len(ordered) and timestamps[j] <= deadline:
                candidate = ordered[j]
                if (
                    j not in consumed
                    and candidate.direction is TransferDirection.IN
                    and candidate.wallet_id != out_txn.wallet_id
                ):
                    amount_diff = abs(candidate.amount - out_txn.amount)
                    if amount_diff <= self._cfg.amount_tolerance:
                        key = (candidate.timestamp - out_txn.timestamp, amount_diff, j)
                        if best is None or key < best:
                            best = key
                j += 1

            if best is None:
                continue

            in_index = best[2]
            consumed.add(i)
            consumed.add(in_index)
            matches[out_txn.txn_id] = ordered[in_index].txn_id

        logger.debug("Matched %d transfer(s) across %d transaction(s)", len(matches), len(ordered))
        return matches
