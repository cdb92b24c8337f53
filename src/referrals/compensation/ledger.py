"""Loyalty ledger — cumulative referred duration per referrer.

The ledger is the data source for the loyalty strategy. Entries are
created implicitly on a referrer's first referral, grow on every
subsequent one and are never reset or destroyed.

Accrual happens regardless of whether the referral was actually paid:
an empty treasury still counts toward a referrer's loyalty.

Storage is in-memory. The program snapshots the ledger before each
operation and restores it if the operation fails.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

from referrals.models.referral import normalize_identity


class LoyaltyLedger:
    """In-memory accumulator of referred duration.

    Usage:
        ledger = LoyaltyLedger()
        ledger.accrue("0xabc...", 365 * 24 * 60 * 60)
        ledger.cumulative_of("0xabc...")  # -> 31536000
    """

    def __init__(self) -> None:
        self._cumulative: Dict[str, int] = {}

    def accrue(self, referrer: str, duration: int) -> int:
        """Add duration to the referrer's total and return the new total."""
        if duration < 0:
            raise ValueError(f"Accrued duration must be non-negative, got {duration}")
        key = normalize_identity(referrer)
        total = self._cumulative.get(key, 0) + duration
        self._cumulative[key] = total
        return total

    def cumulative_of(self, referrer: str) -> int:
        """Return the referrer's total (zero for unseen referrers)."""
        return self._cumulative.get(normalize_identity(referrer), 0)

    def referrers(self) -> List[str]:
        """Return every referrer with an entry."""
        return list(self._cumulative)

    def snapshot(self) -> Dict[str, int]:
        return dict(self._cumulative)

    def restore(self, state: Dict[str, int]) -> None:
        self._cumulative = dict(state)


@dataclass(frozen=True)
class LoyaltyAccrual:
    """Side effect: add a referral's duration to the referrer's total."""
    ledger: LoyaltyLedger
    referrer: str
    duration: int

    def apply(self) -> None:
        self.ledger.accrue(self.referrer, self.duration)
