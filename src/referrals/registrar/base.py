"""Collaborator contracts — the registrar and the value rail.

The referral program never prices names, registers them, or moves value
itself. It talks to these Protocols, so an in-memory simulation and an
on-chain adapter are interchangeable.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from referrals.models.referral import Price, RegistrationRequest


@runtime_checkable
class RegistrarController(Protocol):
    """Pricing and registration capability consumed by a program.

    register and renew must accept an attached payment covering the quote
    and must fail atomically (no partial effect) on any rejection, raising
    RegistrarError.
    """

    @property
    def address(self) -> str:
        """Account that receives forwarded payments."""
        ...

    def rent_price(self, name: str, duration: int) -> Price:
        ...

    def register(
        self, request: RegistrationRequest, *, payer: str, value: int,
    ) -> int:
        """Register the name and return its token id."""
        ...

    def renew(self, name: str, duration: int, *, payer: str, value: int) -> None:
        ...


@runtime_checkable
class ValueRail(Protocol):
    """Moves value between accounts.

    gas_limit bounds the work a recipient may do on receipt; None means
    unbounded. A failed transfer raises TransferFailedError and moves
    nothing.
    """

    def balance_of(self, address: str) -> int:
        ...

    def transfer(
        self,
        sender: str,
        to: str,
        amount: int,
        gas_limit: Optional[int] = None,
    ) -> None:
        ...
