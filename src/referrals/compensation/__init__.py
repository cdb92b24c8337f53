"""Compensation subsystem — commission strategies, treasury, loyalty ledger, allowlist."""

from referrals.compensation.allowlist import AllowlistVerifier
from referrals.compensation.ledger import LoyaltyLedger
from referrals.compensation.strategies import (
    AllowlistGatedStrategy,
    CommissionStrategy,
    DurationGatedStrategy,
    LoyaltyStrategy,
    NoCommissionStrategy,
    PercentStrategy,
    build_strategy,
)
from referrals.compensation.treasury import PayoutMode, Treasury

__all__ = [
    "AllowlistGatedStrategy",
    "AllowlistVerifier",
    "CommissionStrategy",
    "DurationGatedStrategy",
    "LoyaltyLedger",
    "LoyaltyStrategy",
    "NoCommissionStrategy",
    "PayoutMode",
    "PercentStrategy",
    "Treasury",
    "build_strategy",
]
