"""Referral program exceptions.

Fatal errors abort the whole register/renew operation and trigger a full
rollback. Declining to pay a commission is never an error; strategies
return a zero decision instead.
"""


class ReferralError(Exception):
    """Base exception for referral program errors"""
    pass


class UnauthorizedError(ReferralError, PermissionError):
    """Raised when an owner-only operation is called by someone else"""
    pass


class InsufficientPaymentError(ReferralError, ValueError):
    """Raised when the attached value does not cover the registrar quote"""
    pass


class InsufficientFundsError(ReferralError, ValueError):
    """Raised when a payout exceeds the treasury's available balance"""
    pass


class TransferFailedError(ReferralError, RuntimeError):
    """Raised when the value rail cannot deliver a transfer"""
    pass


class RefundFailedError(TransferFailedError):
    """Raised when overpayment cannot be returned to the caller"""
    pass


class RegistrarError(ReferralError, RuntimeError):
    """Raised when the external pricing or registration call fails"""
    pass


class MalformedReferrerDataError(ReferralError, ValueError):
    """Raised when referrer-supplied data cannot be decoded"""
    pass
