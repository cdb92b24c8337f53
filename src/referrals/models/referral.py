"""Referral models — prices, referral context, commission decisions.

All monetary values are unsigned integers in the smallest unit (wei).
Rates are integer basis points and every division floors, so the same
inputs always produce the same commission.

Invariants enforced by these models:
- The zero address is the "no referrer" sentinel
- A ReferralContext is built per call and never persisted
- A CommissionDecision never carries a negative amount
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol, Tuple, runtime_checkable

from eth_utils import is_address, to_checksum_address


BIPS_DENOMINATOR = 10_000
ONE_DAY = 24 * 60 * 60
ONE_YEAR = 365 * ONE_DAY

MAX_UINT64 = 2**64 - 1
MAX_FLAGS = 2**96 - 1

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def normalize_identity(identity: Optional[str | bytes]) -> str:
    """Return the checksummed form of an identity.

    None and empty values map to ZERO_ADDRESS (no referrer).
    Raises ValueError for anything that is not a 20-byte address.
    """
    if identity is None or identity == "" or identity == b"":
        return ZERO_ADDRESS
    if isinstance(identity, bytes):
        if len(identity) != 20:
            raise ValueError(f"Identity must be 20 bytes, got {len(identity)}")
        return to_checksum_address(identity)
    if not is_address(identity):
        raise ValueError(f"Not a valid address: {identity!r}")
    return to_checksum_address(identity)


def is_absent(identity: str) -> bool:
    """Whether the identity is the no-referrer sentinel."""
    return normalize_identity(identity) == ZERO_ADDRESS


@dataclass(frozen=True)
class Price:
    """A registrar quote for (name, duration)."""
    base: int
    premium: int = 0

    def __post_init__(self) -> None:
        if self.base < 0 or self.premium < 0:
            raise ValueError(
                f"Price components must be non-negative, got base={self.base} "
                f"premium={self.premium}"
            )

    @property
    def total(self) -> int:
        return self.base + self.premium


@dataclass(frozen=True)
class ReferralContext:
    """Everything a commission strategy may look at for one referral."""
    name: str
    duration: int
    price: Price
    referrer: str
    referrer_data: bytes = b""

    @property
    def total_price(self) -> int:
        return self.price.total

    @property
    def has_referrer(self) -> bool:
        return not is_absent(self.referrer)


@runtime_checkable
class SideEffect(Protocol):
    """Bookkeeping a strategy asks the program to apply.

    Side effects are applied by the program inside the atomic operation,
    after the strategy returns and before the payout.
    """

    def apply(self) -> None:
        ...


@dataclass(frozen=True)
class CommissionDecision:
    """Outcome of a strategy evaluation.

    amount may be zero. side_effects are applied even when amount is zero.
    """
    amount: int = 0
    side_effects: Tuple[SideEffect, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError(f"Commission must be non-negative, got {self.amount}")

    def clamped(self, available: int) -> CommissionDecision:
        """Return a copy whose amount never exceeds available."""
        if self.amount <= available:
            return self
        return CommissionDecision(
            amount=max(0, available), side_effects=self.side_effects,
        )


ZERO_DECISION = CommissionDecision()


@dataclass(frozen=True)
class RegistrationRequest:
    """Arguments forwarded unchanged to the registrar's register call."""
    name: str
    owner: str
    secret: bytes
    subregistry: str
    resolver: str
    flags: int
    duration: int

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Name must not be empty")
        if not isinstance(self.secret, bytes) or len(self.secret) != 32:
            raise ValueError("Secret must be exactly 32 bytes")
        if not 0 <= self.flags <= MAX_FLAGS:
            raise ValueError(f"Flags must fit in 96 bits, got {self.flags}")
        validate_duration(self.duration)


def validate_duration(duration: int) -> None:
    """Durations are positive uint64 seconds."""
    if not 0 < duration <= MAX_UINT64:
        raise ValueError(f"Duration must be a positive uint64, got {duration}")
