"""Tests for commission strategies — proves payout and bookkeeping invariants hold."""

import pytest

from eth_utils import to_checksum_address

from referrals.compensation.allowlist import AllowlistVerifier, encode_proof
from referrals.compensation.ledger import LoyaltyAccrual, LoyaltyLedger
from referrals.compensation.strategies import (
    LOYALTY_CAP_BIPS,
    AllowlistGatedStrategy,
    CommissionStrategy,
    DurationGatedStrategy,
    LoyaltyStrategy,
    NoCommissionStrategy,
    PercentStrategy,
    build_strategy,
)
from referrals.crypto.merkle import AllowlistTree
from referrals.errors import MalformedReferrerDataError
from referrals.models.referral import (
    ONE_DAY,
    ONE_YEAR,
    ZERO_ADDRESS,
    CommissionDecision,
    Price,
    ReferralContext,
)
from referrals.ownership import Ownership


UNIT = 10**18


def _addr(n: int) -> str:
    return to_checksum_address(f"0x{n:040x}")


OWNER = _addr(1)
REFERRER = _addr(2)
OUTSIDER = _addr(3)


def _context(
    total: int = 100 * UNIT,
    duration: int = ONE_YEAR,
    referrer: str = REFERRER,
    referrer_data: bytes = b"",
    premium: int = 0,
) -> ReferralContext:
    return ReferralContext(
        name="alice",
        duration=duration,
        price=Price(base=total - premium, premium=premium),
        referrer=referrer,
        referrer_data=referrer_data,
    )


class TestPercentStrategy:
    def test_scenario_five_percent(self) -> None:
        """500 bips of 100 units with 10 in the treasury pays 5."""
        strategy = PercentStrategy(500)
        decision = strategy.evaluate(_context(total=100), current_balance=10)
        assert decision.amount == 5
        assert decision.side_effects == ()

    def test_scenario_clamped_to_balance(self) -> None:
        strategy = PercentStrategy(500)
        decision = strategy.evaluate(_context(total=100), current_balance=3)
        assert decision.amount == 3

    def test_premium_counts_toward_total(self) -> None:
        strategy = PercentStrategy(1000)
        decision = strategy.evaluate(
            _context(total=200, premium=50), current_balance=10**6,
        )
        assert decision.amount == 20

    def test_zero_balance_pays_nothing(self) -> None:
        assert PercentStrategy(500).evaluate(_context(), 0).amount == 0

    def test_absent_referrer_pays_nothing(self) -> None:
        decision = PercentStrategy(500).evaluate(
            _context(referrer=ZERO_ADDRESS), 100 * UNIT,
        )
        assert decision == CommissionDecision()

    def test_floor_division(self) -> None:
        # 99 * 1 / 10000 floors to 0
        assert PercentStrategy(1).evaluate(_context(total=99), 10**6).amount == 0

    @pytest.mark.parametrize("bips", [0, 10_000])
    def test_bounds_accepted(self, bips: int) -> None:
        assert PercentStrategy(bips).commission_bips == bips

    @pytest.mark.parametrize("bips", [-1, 10_001])
    def test_bounds_rejected(self, bips: int) -> None:
        with pytest.raises(ValueError, match="bips"):
            PercentStrategy(bips)

    def test_full_rate_pays_entire_price(self) -> None:
        assert PercentStrategy(10_000).evaluate(_context(total=100), 1000).amount == 100


class TestDurationGatedStrategy:
    def test_short_duration_pays_nothing(self) -> None:
        strategy = DurationGatedStrategy(PercentStrategy(500))
        decision = strategy.evaluate(_context(duration=ONE_YEAR - 1), 100 * UNIT)
        assert decision.amount == 0

    def test_one_year_matches_inner(self) -> None:
        inner = PercentStrategy(500)
        gated = DurationGatedStrategy(inner)
        ctx = _context(duration=ONE_YEAR)
        assert gated.evaluate(ctx, 100 * UNIT) == inner.evaluate(ctx, 100 * UNIT)

    def test_short_duration_skips_inner_side_effects(self) -> None:
        ledger = LoyaltyLedger()
        gated = DurationGatedStrategy(LoyaltyStrategy(ledger))
        decision = gated.evaluate(_context(duration=30 * ONE_DAY), 100 * UNIT)
        assert decision.side_effects == ()

    def test_long_duration_keeps_inner_side_effects(self) -> None:
        ledger = LoyaltyLedger()
        gated = DurationGatedStrategy(LoyaltyStrategy(ledger))
        decision = gated.evaluate(_context(duration=2 * ONE_YEAR), 100 * UNIT)
        assert len(decision.side_effects) == 1

    def test_inherits_commission_flag(self) -> None:
        assert DurationGatedStrategy(PercentStrategy(1)).pays_commission
        assert not DurationGatedStrategy(NoCommissionStrategy()).pays_commission


class TestLoyaltyStrategy:
    def test_rate_schedule(self) -> None:
        assert LoyaltyStrategy.rate_bips(0) == 0
        assert LoyaltyStrategy.rate_bips(100 * ONE_YEAR) == 100
        assert LoyaltyStrategy.rate_bips(1000 * ONE_YEAR) == 1000

    def test_rate_caps_at_twenty_percent(self) -> None:
        assert LoyaltyStrategy.rate_bips(2000 * ONE_YEAR) == LOYALTY_CAP_BIPS
        assert LoyaltyStrategy.rate_bips(10**9 * ONE_YEAR) == LOYALTY_CAP_BIPS

    def test_scenario_long_standing_referrer(self) -> None:
        """9000 prior days plus a 365-day referral pays 25 bips of the price."""
        ledger = LoyaltyLedger()
        ledger.accrue(REFERRER, 9000 * ONE_DAY)
        strategy = LoyaltyStrategy(ledger)

        decision = strategy.evaluate(_context(total=100 * UNIT), 1000 * UNIT)
        for effect in decision.side_effects:
            effect.apply()

        assert ledger.cumulative_of(REFERRER) == 9365 * ONE_DAY
        assert decision.amount == 100 * UNIT * 25 // 10_000  # 0.25 units

    def test_evaluation_does_not_mutate_ledger(self) -> None:
        ledger = LoyaltyLedger()
        LoyaltyStrategy(ledger).evaluate(_context(), 100 * UNIT)
        assert ledger.cumulative_of(REFERRER) == 0

    def test_accrual_returned_at_zero_balance(self) -> None:
        ledger = LoyaltyLedger()
        decision = LoyaltyStrategy(ledger).evaluate(_context(), current_balance=0)
        assert decision.amount == 0
        assert decision.side_effects == (LoyaltyAccrual(ledger, REFERRER, ONE_YEAR),)

    def test_own_duration_counts_toward_rate(self) -> None:
        ledger = LoyaltyLedger()
        decision = LoyaltyStrategy(ledger).evaluate(
            _context(total=10_000, duration=100 * ONE_YEAR), 10**6,
        )
        assert decision.amount == 100  # 100 bips of 10_000

    def test_absent_referrer_no_accrual(self) -> None:
        ledger = LoyaltyLedger()
        decision = LoyaltyStrategy(ledger).evaluate(
            _context(referrer=ZERO_ADDRESS), 100 * UNIT,
        )
        assert decision.side_effects == ()

    def test_clamped_to_balance(self) -> None:
        ledger = LoyaltyLedger()
        ledger.accrue(REFERRER, 5000 * ONE_YEAR)
        decision = LoyaltyStrategy(ledger).evaluate(_context(total=100 * UNIT), 7)
        assert decision.amount == 7

    def test_default_ledger_is_fresh(self) -> None:
        assert LoyaltyStrategy().ledger is not LoyaltyStrategy().ledger


class TestAllowlistGatedStrategy:
    def _setup(self) -> tuple:
        tree = AllowlistTree([REFERRER, _addr(10), _addr(11)])
        verifier = AllowlistVerifier(Ownership(OWNER), tree.root)
        return tree, verifier

    def test_member_gets_inner_commission(self) -> None:
        tree, verifier = self._setup()
        strategy = AllowlistGatedStrategy(PercentStrategy(500), verifier)
        data = encode_proof(tree.proof(REFERRER))
        decision = strategy.evaluate(_context(total=100, referrer_data=data), 10)
        assert decision.amount == 5

    def test_outsider_gets_nothing(self) -> None:
        tree, verifier = self._setup()
        strategy = AllowlistGatedStrategy(PercentStrategy(500), verifier)
        data = encode_proof(tree.proof(REFERRER))
        decision = strategy.evaluate(
            _context(total=100, referrer=OUTSIDER, referrer_data=data), 10,
        )
        assert decision.amount == 0

    def test_failed_check_skips_inner_side_effects(self) -> None:
        _, verifier = self._setup()
        ledger = LoyaltyLedger()
        strategy = AllowlistGatedStrategy(LoyaltyStrategy(ledger), verifier)
        decision = strategy.evaluate(_context(referrer=OUTSIDER), 100 * UNIT)
        assert decision.side_effects == ()

    def test_passed_check_keeps_inner_side_effects(self) -> None:
        tree, verifier = self._setup()
        ledger = LoyaltyLedger()
        strategy = AllowlistGatedStrategy(LoyaltyStrategy(ledger), verifier)
        data = encode_proof(tree.proof(REFERRER))
        decision = strategy.evaluate(_context(referrer_data=data), 0)
        assert len(decision.side_effects) == 1

    def test_stale_proof_after_root_update(self) -> None:
        tree, verifier = self._setup()
        strategy = AllowlistGatedStrategy(PercentStrategy(500), verifier)
        data = encode_proof(tree.proof(REFERRER))

        verifier.update_root(OWNER, AllowlistTree([_addr(10), _addr(11)]).root)
        decision = strategy.evaluate(_context(total=100, referrer_data=data), 10)
        assert decision.amount == 0

    def test_malformed_data_raises(self) -> None:
        _, verifier = self._setup()
        strategy = AllowlistGatedStrategy(PercentStrategy(500), verifier)
        with pytest.raises(MalformedReferrerDataError):
            strategy.evaluate(_context(referrer_data=b"\x01\x02\x03"), 10)

    def test_absent_referrer_ignores_malformed_data(self) -> None:
        _, verifier = self._setup()
        strategy = AllowlistGatedStrategy(PercentStrategy(500), verifier)
        decision = strategy.evaluate(
            _context(referrer=ZERO_ADDRESS, referrer_data=b"\x01"), 10,
        )
        assert decision.amount == 0

    def test_single_member_needs_no_proof(self) -> None:
        tree = AllowlistTree([REFERRER])
        verifier = AllowlistVerifier(Ownership(OWNER), tree.root)
        strategy = AllowlistGatedStrategy(PercentStrategy(500), verifier)
        assert strategy.evaluate(_context(total=100), 10).amount == 5


class TestBuildStrategy:
    def test_percent(self) -> None:
        strategy = build_strategy("percent", commission_bips=250)
        assert isinstance(strategy, PercentStrategy)
        assert isinstance(strategy, CommissionStrategy)

    def test_none(self) -> None:
        strategy = build_strategy("none")
        assert not strategy.pays_commission
        assert strategy.evaluate(_context(), 100 * UNIT).amount == 0

    def test_full_chain(self) -> None:
        verifier = AllowlistVerifier(Ownership(OWNER))
        ledger = LoyaltyLedger()
        strategy = build_strategy(
            "loyalty", duration_gated=True, ledger=ledger, verifier=verifier,
        )
        assert isinstance(strategy, AllowlistGatedStrategy)
        assert isinstance(strategy.inner, DurationGatedStrategy)
        assert isinstance(strategy.inner.inner, LoyaltyStrategy)
        assert strategy.inner.inner.ledger is ledger

    def test_unknown_kind(self) -> None:
        with pytest.raises(ValueError, match="Unknown strategy"):
            build_strategy("tiered")


class TestCommissionDecision:
    def test_negative_rejected(self) -> None:
        with pytest.raises(ValueError):
            CommissionDecision(amount=-1)

    def test_clamped(self) -> None:
        assert CommissionDecision(amount=10).clamped(4).amount == 4
        assert CommissionDecision(amount=3).clamped(4).amount == 3
