"""Commission strategies — decide whether and how much to pay a referrer.

Every strategy implements one contract:

    evaluate(context, current_balance) -> CommissionDecision

Decorators (duration gate, allowlist gate) hold an inner strategy and
delegate to it on the success path. They compose freely:

    AllowlistGatedStrategy(DurationGatedStrategy(PercentStrategy(500)), verifier)

Rules every strategy follows:
- No referrer: zero commission, zero side effects.
- Declining to pay (empty treasury, short duration, failed allowlist
  check) is a zero decision, never an exception. Registration must not be
  blocked by commission logic.
- Exceptions are reserved for conditions unrelated to funds, such as
  malformed referrer data. They abort the whole registration.
- Amounts never exceed current_balance. The program clamps again before
  paying, so a third-party strategy cannot overdraw the treasury.

Formulas (integer, flooring):
    percent:  commission = min(total * bips // 10_000, balance)
    loyalty:  rate = min(cumulative * 100 // (100 * ONE_YEAR), 2000)
              commission = min(total * rate // 10_000, balance)
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from referrals.compensation.allowlist import AllowlistVerifier, decode_proof
from referrals.compensation.ledger import LoyaltyAccrual, LoyaltyLedger
from referrals.models.referral import (
    BIPS_DENOMINATOR,
    ONE_YEAR,
    CommissionDecision,
    ReferralContext,
    ZERO_DECISION,
)


# Loyalty schedule: 1% per 100 years of referred duration, capped at 20%.
LOYALTY_BONUS_RATE_BIPS = 100
LOYALTY_BONUS_PERIOD_SECONDS = 100 * ONE_YEAR
LOYALTY_CAP_BIPS = 2000

DURATION_GATE_SECONDS = ONE_YEAR


@runtime_checkable
class CommissionStrategy(Protocol):
    """Pluggable commission rule."""

    @property
    def pays_commission(self) -> bool:
        """Whether referrals under this rule carry a commission amount."""
        ...

    def evaluate(
        self, context: ReferralContext, current_balance: int,
    ) -> CommissionDecision:
        ...


def percent_of(total_price: int, bips: int, current_balance: int) -> int:
    """Basis-point share of total_price, clamped to the balance."""
    return min(total_price * bips // BIPS_DENOMINATOR, max(0, current_balance))


def validate_bips(bips: int) -> int:
    if not 0 <= bips <= BIPS_DENOMINATOR:
        raise ValueError(
            f"Commission must be between 0 and {BIPS_DENOMINATOR} bips, got {bips}"
        )
    return bips


class NoCommissionStrategy:
    """Plain referral tracking: the program only emits Referral events."""

    pays_commission = False

    def evaluate(
        self, context: ReferralContext, current_balance: int,
    ) -> CommissionDecision:
        return ZERO_DECISION


class PercentStrategy:
    """Fixed share of the total price.

    The rate is fixed at construction in basis points (0–10000).
    """

    pays_commission = True

    def __init__(self, commission_bips: int) -> None:
        self._bips = validate_bips(commission_bips)

    @property
    def commission_bips(self) -> int:
        return self._bips

    def evaluate(
        self, context: ReferralContext, current_balance: int,
    ) -> CommissionDecision:
        if not context.has_referrer or current_balance <= 0:
            return ZERO_DECISION
        return CommissionDecision(
            amount=percent_of(context.total_price, self._bips, current_balance),
        )


class DurationGatedStrategy:
    """Pays nothing for referrals shorter than one year.

    At or above the threshold the inner decision is returned unchanged,
    side effects included.
    """

    def __init__(self, inner: CommissionStrategy) -> None:
        self._inner = inner

    @property
    def inner(self) -> CommissionStrategy:
        return self._inner

    @property
    def pays_commission(self) -> bool:
        return self._inner.pays_commission

    def evaluate(
        self, context: ReferralContext, current_balance: int,
    ) -> CommissionDecision:
        if not context.has_referrer or context.duration < DURATION_GATE_SECONDS:
            return ZERO_DECISION
        return self._inner.evaluate(context, current_balance)


class LoyaltyStrategy:
    """Rate grows with the referrer's cumulative referred duration.

    The referral's own duration counts toward the rate it is paid at.
    Accrual is returned as a side effect on every evaluation with a
    referrer, including when the balance is zero.

    The ledger is injected so each program (or test) owns its store.
    """

    pays_commission = True

    def __init__(self, ledger: Optional[LoyaltyLedger] = None) -> None:
        self._ledger = ledger if ledger is not None else LoyaltyLedger()

    @property
    def ledger(self) -> LoyaltyLedger:
        return self._ledger

    @staticmethod
    def rate_bips(cumulative_duration: int) -> int:
        """Loyalty rate for a cumulative duration, never above the cap."""
        rate = cumulative_duration * LOYALTY_BONUS_RATE_BIPS // LOYALTY_BONUS_PERIOD_SECONDS
        return min(rate, LOYALTY_CAP_BIPS)

    def evaluate(
        self, context: ReferralContext, current_balance: int,
    ) -> CommissionDecision:
        if not context.has_referrer:
            return ZERO_DECISION
        accrual = LoyaltyAccrual(self._ledger, context.referrer, context.duration)
        cumulative = self._ledger.cumulative_of(context.referrer) + context.duration
        amount = percent_of(
            context.total_price, self.rate_bips(cumulative), current_balance,
        )
        return CommissionDecision(amount=amount, side_effects=(accrual,))


class AllowlistGatedStrategy:
    """Only allowlisted referrers reach the inner strategy.

    The membership proof is read from referrer_data. A proof that does
    not verify against the current root yields zero and none of the inner
    strategy's side effects. Data that cannot be decoded at all raises
    MalformedReferrerDataError.
    """

    def __init__(
        self, inner: CommissionStrategy, verifier: AllowlistVerifier,
    ) -> None:
        self._inner = inner
        self._verifier = verifier

    @property
    def inner(self) -> CommissionStrategy:
        return self._inner

    @property
    def verifier(self) -> AllowlistVerifier:
        return self._verifier

    @property
    def pays_commission(self) -> bool:
        return self._inner.pays_commission

    def evaluate(
        self, context: ReferralContext, current_balance: int,
    ) -> CommissionDecision:
        if not context.has_referrer:
            return ZERO_DECISION
        proof = decode_proof(context.referrer_data)
        if not self._verifier.is_member(proof, context.referrer):
            return ZERO_DECISION
        return self._inner.evaluate(context, current_balance)


def build_strategy(
    kind: str,
    commission_bips: int = 0,
    duration_gated: bool = False,
    ledger: Optional[LoyaltyLedger] = None,
    verifier: Optional[AllowlistVerifier] = None,
) -> CommissionStrategy:
    """Compose a strategy chain.

    kind is "none", "percent" or "loyalty". The duration gate wraps the
    base rule; the allowlist gate, when a verifier is given, wraps
    everything.
    """
    strategy: CommissionStrategy
    if kind == "none":
        strategy = NoCommissionStrategy()
    elif kind == "percent":
        strategy = PercentStrategy(commission_bips)
    elif kind == "loyalty":
        strategy = LoyaltyStrategy(ledger)
    else:
        raise ValueError(f"Unknown strategy kind: {kind!r}")

    if duration_gated:
        strategy = DurationGatedStrategy(strategy)
    if verifier is not None:
        strategy = AllowlistGatedStrategy(strategy, verifier)
    return strategy
