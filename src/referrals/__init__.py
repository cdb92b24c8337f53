"""Registrar referral programs.

Self-funded wrappers around a name registrar that forward registrations
and renewals unchanged and optionally pay the referrer a commission from
the program's own treasury.
"""

from referrals.program import ReferralProgram

__all__ = ["ReferralProgram"]

__version__ = "0.1.0"
