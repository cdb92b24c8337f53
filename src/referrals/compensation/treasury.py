"""Treasury — the program's own fund balance.

The balance IS the program account's balance on the value rail. There is
no separate ledger entity: deposits are plain transfers into the account
and payouts are plain transfers out of it.

Key properties:
- Deposits are open to anyone; depositors are not tracked.
- A payout can never exceed the available balance.
- Push payouts carry a bounded gas stipend so a referrer cannot force
  unbounded work inside someone else's registration.
- Pull payouts credit the referrer instead; credits are owed funds and
  are excluded from the available balance, so close() cannot take them.
- close() drains the available balance to the owner's chosen account;
  the program keeps working and can be refilled.
"""

from __future__ import annotations

import enum
import logging
from typing import Dict, Optional

from referrals.errors import InsufficientFundsError, TransferFailedError
from referrals.models.referral import normalize_identity
from referrals.ownership import Ownership
from referrals.registrar.base import ValueRail

logger = logging.getLogger(__name__)


DEFAULT_PAYOUT_GAS_STIPEND = 2300


class PayoutMode(str, enum.Enum):
    """How commissions reach referrers."""
    PUSH = "push"
    PULL = "pull"


class Treasury:
    """Program funds held on a value rail.

    Usage:
        treasury = Treasury(rail, program_account, ownership)
        treasury.deposit(sponsor, 10**18)
        treasury.payout(referrer, 5 * 10**16)
        treasury.close(owner, owner)
    """

    def __init__(
        self,
        rail: ValueRail,
        account: str,
        ownership: Ownership,
        mode: PayoutMode = PayoutMode.PUSH,
        payout_gas_stipend: Optional[int] = DEFAULT_PAYOUT_GAS_STIPEND,
    ) -> None:
        self._rail = rail
        self._account = normalize_identity(account)
        self._ownership = ownership
        self._mode = PayoutMode(mode)
        self._stipend = payout_gas_stipend
        self._credits: Dict[str, int] = {}

    @property
    def account(self) -> str:
        return self._account

    @property
    def mode(self) -> PayoutMode:
        return self._mode

    @property
    def balance(self) -> int:
        """Gross account balance, including credits owed in pull mode."""
        return self._rail.balance_of(self._account)

    @property
    def outstanding_credits(self) -> int:
        return sum(self._credits.values())

    @property
    def available(self) -> int:
        """Balance that may still be paid out or withdrawn by the owner."""
        return max(0, self.balance - self.outstanding_credits)

    def credit_of(self, referrer: str) -> int:
        return self._credits.get(normalize_identity(referrer), 0)

    def deposit(self, sender: str, amount: int) -> None:
        """Fund the treasury. Anyone may deposit."""
        if amount <= 0:
            raise ValueError(f"Deposit must be positive, got {amount}")
        self._rail.transfer(sender, self._account, amount)

    def payout(self, to: str, amount: int) -> None:
        """Pay a commission.

        Raises:
            InsufficientFundsError: If amount exceeds the available balance.
            TransferFailedError: If a push transfer is not accepted.
        """
        if amount < 0:
            raise ValueError(f"Payout must be non-negative, got {amount}")
        if amount == 0:
            return
        available = self.available
        if amount > available:
            raise InsufficientFundsError(
                f"Payout {amount} exceeds available balance {available}"
            )
        to = normalize_identity(to)
        if self._mode == PayoutMode.PULL:
            self._credits[to] = self._credits.get(to, 0) + amount
            return
        self._rail.transfer(self._account, to, amount, gas_limit=self._stipend)

    def withdraw(self, referrer: str) -> int:
        """Send a referrer everything they are owed. Returns the amount."""
        referrer = normalize_identity(referrer)
        owed = self._credits.get(referrer, 0)
        if owed == 0:
            return 0
        self._credits[referrer] = 0
        try:
            self._rail.transfer(self._account, referrer, owed)
        except TransferFailedError:
            self._credits[referrer] = owed
            raise
        del self._credits[referrer]
        return owed

    def close(self, caller: str, to: str) -> int:
        """Owner only: move the whole available balance to `to`."""
        self._ownership.require_owner(caller)
        amount = self.available
        if amount > 0:
            self._rail.transfer(self._account, to, amount)
        logger.info("Treasury %s closed: %d sent to %s", self._account, amount, to)
        return amount

    def snapshot(self) -> Dict[str, int]:
        return dict(self._credits)

    def restore(self, state: Dict[str, int]) -> None:
        self._credits = dict(state)
