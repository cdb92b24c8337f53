"""Referral program — forwards registrations and renewals, then pays referrers.

This is the primary interface of a program instance. Each register/renew
call runs these steps strictly in order:

1. Collect the value the caller attached into the program account.
2. Quote (name, duration) from the registrar; total = base + premium.
3. Forward exactly `total` to the registrar.
4. Refund anything the caller attached beyond `total`.
5. Evaluate the commission strategy against the available balance,
   apply its side effects, pay the (clamped) commission.
6. Emit Referral, plus ReferralWithCommission for commission-bearing
   strategies.

Each call is one atomic unit. If any step raises, every participant
(rail balances, registrar state, treasury credits, loyalty ledgers) is
restored to its state before the call and no event is written, including
when the call is interrupted (KeyboardInterrupt). Calls on one program
are serialised with a lock.

A strategy that declines to pay returns zero; registration proceeds. Only
fatal conditions (registrar failure, short payment, refund or payout
transfer failure, malformed referrer data) abort the call.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional, Protocol, Sequence, runtime_checkable
from uuid import uuid4

from referrals.compensation.allowlist import AllowlistVerifier, RootLike
from referrals.compensation.ledger import LoyaltyLedger
from referrals.compensation.strategies import CommissionStrategy, build_strategy
from referrals.compensation.treasury import (
    DEFAULT_PAYOUT_GAS_STIPEND,
    PayoutMode,
    Treasury,
)
from referrals.config import ProgramConfig
from referrals.crypto.merkle import EMPTY_ROOT
from referrals.errors import (
    InsufficientPaymentError,
    ReferralError,
    RefundFailedError,
    TransferFailedError,
)
from referrals.models.referral import (
    Price,
    ReferralContext,
    RegistrationRequest,
    normalize_identity,
    validate_duration,
)
from referrals.ownership import Ownership
from referrals.persistence.event_log import EventKind, EventLog, EventRecord
from referrals.registrar.base import RegistrarController, ValueRail

logger = logging.getLogger(__name__)


@runtime_checkable
class Transactional(Protocol):
    """State that can be captured before an operation and put back after a failure."""

    def snapshot(self) -> Any:
        ...

    def restore(self, state: Any) -> None:
        ...


def strategy_chain(strategy: CommissionStrategy) -> Iterator[CommissionStrategy]:
    """Yield a strategy and every strategy it decorates, outermost first."""
    current: Optional[CommissionStrategy] = strategy
    while current is not None:
        yield current
        current = getattr(current, "inner", None)


class ReferralProgram:
    """One deployed referral program: its treasury, strategy and owner.

    Usage:
        program = ReferralProgram.from_config(
            ProgramConfig(strategy="percent", commission_bips=500),
            registrar=registrar, rail=rail, account=program_account, owner=owner,
        )
        program.deposit(sponsor, 10 * 10**18)
        token_id = program.register(
            "alice", alice, secret, ZERO_ADDRESS, resolver, 0, ONE_YEAR,
            referrer, b"", caller=alice, value=quote,
        )
    """

    def __init__(
        self,
        registrar: RegistrarController,
        rail: ValueRail,
        account: str,
        ownership: Ownership,
        strategy: CommissionStrategy,
        event_log: Optional[EventLog] = None,
        payout_mode: PayoutMode = PayoutMode.PUSH,
        payout_gas_stipend: Optional[int] = DEFAULT_PAYOUT_GAS_STIPEND,
        participants: Sequence[Transactional] = (),
    ) -> None:
        self._registrar = registrar
        self._rail = rail
        self._ownership = ownership
        self._strategy = strategy
        self._event_log = event_log if event_log is not None else EventLog()
        self._treasury = Treasury(
            rail, account, ownership,
            mode=payout_mode, payout_gas_stipend=payout_gas_stipend,
        )
        self._lock = threading.RLock()
        self._participants = self._collect_participants(participants)

    @classmethod
    def from_config(
        cls,
        config: ProgramConfig,
        registrar: RegistrarController,
        rail: ValueRail,
        account: str,
        owner: str,
        ledger: Optional[LoyaltyLedger] = None,
        event_log: Optional[EventLog] = None,
    ) -> ReferralProgram:
        """Wire a program from configuration."""
        ownership = Ownership(owner)
        verifier = None
        if config.allowlist:
            verifier = AllowlistVerifier(ownership, config.allowlist_root or EMPTY_ROOT)
        strategy = build_strategy(
            config.strategy,
            commission_bips=config.commission_bips,
            duration_gated=config.duration_gated,
            ledger=ledger,
            verifier=verifier,
        )
        return cls(
            registrar,
            rail,
            account,
            ownership,
            strategy,
            event_log=event_log,
            payout_mode=config.payout_mode,
            payout_gas_stipend=config.payout_gas_stipend,
        )

    @classmethod
    def from_config_dir(
        cls, config_dir: Path, **kwargs: Any,
    ) -> ReferralProgram:
        return cls.from_config(ProgramConfig.from_config_dir(config_dir), **kwargs)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def owner(self) -> str:
        return self._ownership.owner

    @property
    def account(self) -> str:
        return self._treasury.account

    @property
    def balance(self) -> int:
        """Funds available for commissions."""
        return self._treasury.available

    @property
    def treasury(self) -> Treasury:
        return self._treasury

    @property
    def strategy(self) -> CommissionStrategy:
        return self._strategy

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def allowlist_verifier(self) -> Optional[AllowlistVerifier]:
        for strategy in strategy_chain(self._strategy):
            verifier = getattr(strategy, "verifier", None)
            if isinstance(verifier, AllowlistVerifier):
                return verifier
        return None

    # ------------------------------------------------------------------
    # Registration surface
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        owner: str,
        secret: bytes,
        subregistry: str,
        resolver: str,
        flags: int,
        duration: int,
        referrer: Optional[str],
        referrer_data: bytes = b"",
        *,
        caller: str,
        value: int,
    ) -> int:
        """Register a name through the registrar and process the referral.

        Returns the registrar's token id.

        Raises:
            InsufficientPaymentError: If value is below the quote.
            RegistrarError: If the registrar rejects the quote or registration.
            RefundFailedError: If the overpayment cannot be returned.
            TransferFailedError: If the commission transfer is rejected.
            MalformedReferrerDataError: If the strategy cannot decode referrer_data.
        """
        request = RegistrationRequest(
            name=name,
            owner=normalize_identity(owner),
            secret=secret,
            subregistry=normalize_identity(subregistry),
            resolver=normalize_identity(resolver),
            flags=flags,
            duration=duration,
        )
        caller = normalize_identity(caller)
        referrer = normalize_identity(referrer)

        with self._lock, self._atomic("register", name) as pending:
            price = self._collect_and_quote(caller, value, name, duration)
            token_id = self._registrar.register(
                request, payer=self.account, value=price.total,
            )
            self._refund(caller, value - price.total)
            self._process_referral(
                ReferralContext(name, duration, price, referrer, bytes(referrer_data)),
                caller,
                pending,
            )
        return token_id

    def renew(
        self,
        name: str,
        duration: int,
        referrer: Optional[str],
        referrer_data: bytes = b"",
        *,
        caller: str,
        value: int,
    ) -> None:
        """Renew a name through the registrar and process the referral.

        Same payment contract and failure modes as register().
        """
        if not name:
            raise ValueError("Name must not be empty")
        validate_duration(duration)
        caller = normalize_identity(caller)
        referrer = normalize_identity(referrer)

        with self._lock, self._atomic("renew", name) as pending:
            price = self._collect_and_quote(caller, value, name, duration)
            self._registrar.renew(
                name, duration, payer=self.account, value=price.total,
            )
            self._refund(caller, value - price.total)
            self._process_referral(
                ReferralContext(name, duration, price, referrer, bytes(referrer_data)),
                caller,
                pending,
            )

    # ------------------------------------------------------------------
    # Treasury and owner surface
    # ------------------------------------------------------------------

    def deposit(self, sender: str, amount: int) -> None:
        """Fund the program. Open to anyone; depositors are not recorded."""
        with self._lock, self._atomic("deposit", self.account) as pending:
            self._treasury.deposit(sender, amount)
            pending.append(self._event(
                EventKind.TREASURY_DEPOSITED, self.account, {"amount": amount},
            ))

    def close(self, caller: str, to: str) -> int:
        """Owner only: withdraw the entire available balance to `to`."""
        with self._lock, self._atomic("close", self.account) as pending:
            amount = self._treasury.close(caller, to)
            pending.append(self._event(
                EventKind.TREASURY_CLOSED,
                normalize_identity(caller),
                {"to": normalize_identity(to), "amount": amount},
            ))
        return amount

    def withdraw(self, referrer: str) -> int:
        """Pull mode: send a referrer their accumulated commission."""
        referrer = normalize_identity(referrer)
        with self._lock, self._atomic("withdraw", referrer) as pending:
            amount = self._treasury.withdraw(referrer)
            if amount:
                pending.append(self._event(
                    EventKind.COMMISSION_WITHDRAWN, referrer,
                    {"referrer": referrer, "amount": amount},
                ))
        return amount

    def update_allowlist_root(self, caller: str, new_root: RootLike) -> bytes:
        """Owner only: replace the allowlist commitment, effective immediately."""
        self._ownership.require_owner(caller)
        verifier = self.allowlist_verifier
        if verifier is None:
            raise ReferralError("Program has no allowlist")
        with self._lock, self._atomic("update_allowlist_root", self.account) as pending:
            root = verifier.update_root(caller, new_root)
            pending.append(self._event(
                EventKind.ALLOWLIST_ROOT_UPDATED,
                normalize_identity(caller),
                {"new_root": "0x" + root.hex()},
            ))
        logger.info("Allowlist root of %s updated to 0x%s", self.account, root.hex())
        return root

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        """Owner only: hand the program to a new owner."""
        with self._lock, self._atomic("transfer_ownership", self.account) as pending:
            previous = self._ownership.transfer(caller, new_owner)
            pending.append(self._event(
                EventKind.OWNERSHIP_TRANSFERRED,
                previous,
                {"previous_owner": previous, "new_owner": self._ownership.owner},
            ))
        logger.info("Ownership of %s transferred to %s", self.account, self._ownership.owner)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _collect_participants(
        self, extra: Sequence[Transactional],
    ) -> List[Transactional]:
        candidates: List[Any] = [self._rail, self._registrar, self._treasury]
        for strategy in strategy_chain(self._strategy):
            candidates.append(getattr(strategy, "ledger", None))
        candidates.extend(extra)

        participants: List[Transactional] = []
        for candidate in candidates:
            if not isinstance(candidate, Transactional):
                continue
            if any(candidate is p for p in participants):
                continue
            participants.append(candidate)
        return participants

    @contextmanager
    def _atomic(self, operation: str, subject: str) -> Iterator[List[EventRecord]]:
        """Run one operation all-or-nothing; events are written on success only."""
        saved = [(p, p.snapshot()) for p in self._participants]
        pending: List[EventRecord] = []
        try:
            yield pending
        except BaseException as exc:
            # Interrupts land here too; nothing may stay half-applied.
            for participant, state in reversed(saved):
                participant.restore(state)
            logger.warning("Rolled back %s of %s: %r", operation, subject, exc)
            raise
        for event in pending:
            self._event_log.append(event)

    def _collect_and_quote(
        self, caller: str, value: int, name: str, duration: int,
    ) -> Price:
        if value < 0:
            raise ValueError(f"Attached value must be non-negative, got {value}")
        if value:
            self._rail.transfer(caller, self.account, value)
        price = self._registrar.rent_price(name, duration)
        if value < price.total:
            raise InsufficientPaymentError(
                f"Attached {value} does not cover price {price.total} for {name!r}"
            )
        return price

    def _refund(self, caller: str, excess: int) -> None:
        if excess <= 0:
            return
        try:
            self._rail.transfer(self.account, caller, excess)
        except TransferFailedError as exc:
            raise RefundFailedError(f"Refund of {excess} to {caller} failed: {exc}") from exc

    def _process_referral(
        self,
        context: ReferralContext,
        caller: str,
        pending: List[EventRecord],
    ) -> None:
        amount = 0
        if context.has_referrer:
            available = self._treasury.available
            decision = self._strategy.evaluate(context, available).clamped(available)
            for effect in decision.side_effects:
                effect.apply()
            self._treasury.payout(context.referrer, decision.amount)
            amount = decision.amount
            if amount:
                logger.info(
                    "Paid %d to %s for %r (%s mode)",
                    amount, context.referrer, context.name, self._treasury.mode.value,
                )
            else:
                logger.debug("No commission for %s on %r", context.referrer, context.name)

        pending.append(self._event(
            EventKind.REFERRAL, caller,
            {"name": context.name, "referrer": context.referrer},
        ))
        if self._strategy.pays_commission:
            pending.append(self._event(
                EventKind.REFERRAL_WITH_COMMISSION, caller,
                {"name": context.name, "referrer": context.referrer, "amount": amount},
            ))

    def _event(
        self, kind: EventKind, actor_id: str, payload: dict[str, Any],
    ) -> EventRecord:
        return EventRecord.create(
            event_id=f"evt_{uuid4().hex[:12]}",
            event_kind=kind,
            actor_id=actor_id,
            payload=payload,
        )
