"""Core data models for referral programs."""

from referrals.models.referral import (
    BIPS_DENOMINATOR,
    ONE_YEAR,
    ZERO_ADDRESS,
    CommissionDecision,
    Price,
    ReferralContext,
    RegistrationRequest,
    SideEffect,
    ZERO_DECISION,
    normalize_identity,
)

__all__ = [
    "BIPS_DENOMINATOR",
    "ONE_YEAR",
    "ZERO_ADDRESS",
    "CommissionDecision",
    "Price",
    "ReferralContext",
    "RegistrationRequest",
    "SideEffect",
    "ZERO_DECISION",
    "normalize_identity",
]
