"""In-memory registrar and value rail.

Reference collaborators for running programs without a chain. Both take
part in the program's rollback (snapshot/restore), which is what makes a
failed register/renew leave every balance exactly as it was.
"""

from __future__ import annotations

import time
from typing import Callable, Dict, Optional, Set

from eth_utils import keccak

from referrals.errors import RegistrarError, TransferFailedError
from referrals.models.referral import (
    Price,
    RegistrationRequest,
    normalize_identity,
    validate_duration,
)


class InMemoryValueRail:
    """Balance map with recipient receive costs.

    A recipient can be marked as rejecting all value, or as needing a
    given amount of gas to accept it. Transfers with a gas_limit below
    the recipient's receive cost fail, which models a bounded stipend.

    Usage:
        rail = InMemoryValueRail()
        rail.mint(alice, 10**18)
        rail.transfer(alice, bob, 10**17)
    """

    def __init__(self) -> None:
        self._balances: Dict[str, int] = {}
        self._receive_costs: Dict[str, int] = {}
        self._rejecting: Set[str] = set()

    def mint(self, address: str, amount: int) -> None:
        """Create value out of thin air (funding test accounts)."""
        if amount < 0:
            raise ValueError(f"Mint amount must be non-negative, got {amount}")
        key = normalize_identity(address)
        self._balances[key] = self._balances.get(key, 0) + amount

    def balance_of(self, address: str) -> int:
        return self._balances.get(normalize_identity(address), 0)

    def reject_transfers(self, address: str) -> None:
        self._rejecting.add(normalize_identity(address))

    def set_receive_cost(self, address: str, gas: int) -> None:
        self._receive_costs[normalize_identity(address)] = gas

    def transfer(
        self,
        sender: str,
        to: str,
        amount: int,
        gas_limit: Optional[int] = None,
    ) -> None:
        if amount < 0:
            raise ValueError(f"Transfer amount must be non-negative, got {amount}")
        src = normalize_identity(sender)
        dst = normalize_identity(to)
        if self._balances.get(src, 0) < amount:
            raise TransferFailedError(
                f"Insufficient balance: {src} has {self._balances.get(src, 0)}, "
                f"needs {amount}"
            )
        if dst in self._rejecting:
            raise TransferFailedError(f"Recipient rejects transfers: {dst}")
        cost = self._receive_costs.get(dst, 0)
        if gas_limit is not None and cost > gas_limit:
            raise TransferFailedError(
                f"Recipient {dst} needs {cost} gas, stipend is {gas_limit}"
            )
        self._balances[src] -= amount
        self._balances[dst] = self._balances.get(dst, 0) + amount

    def snapshot(self) -> Dict[str, int]:
        return dict(self._balances)

    def restore(self, state: Dict[str, int]) -> None:
        self._balances = dict(state)


def token_id(label: str) -> int:
    """Token id of a name: uint256(keccak256(label))."""
    return int.from_bytes(keccak(text=label), "big")


class InMemoryRegistrar:
    """Simulated registrar controller.

    Base price is a fixed rate per second of duration. A premium can be
    set per name and only applies while the name is available (the usual
    shape of a decaying premium after expiry). Registration is
    commitment-free; the secret is accepted and ignored.

    Usage:
        registrar = InMemoryRegistrar(rail, address, price_per_second=10)
        price = registrar.rent_price("alice", ONE_YEAR)
        token = registrar.register(request, payer=program, value=price.total)
    """

    def __init__(
        self,
        rail: InMemoryValueRail,
        address: str,
        price_per_second: int,
        min_name_length: int = 3,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        if price_per_second < 0:
            raise ValueError("Price per second must be non-negative")
        self._rail = rail
        self._address = normalize_identity(address)
        self._price_per_second = price_per_second
        self._min_name_length = min_name_length
        self._clock = clock or (lambda: int(time.time()))
        self._premiums: Dict[str, int] = {}
        self._expiries: Dict[str, int] = {}
        self._owners: Dict[str, str] = {}

    @property
    def address(self) -> str:
        return self._address

    def set_premium(self, name: str, premium: int) -> None:
        self._premiums[name] = premium

    def valid(self, name: str) -> bool:
        return len(name) >= self._min_name_length

    def available(self, name: str) -> bool:
        return self.valid(name) and self._expiries.get(name, 0) <= self._clock()

    def expiry_of(self, name: str) -> int:
        return self._expiries.get(name, 0)

    def owner_of(self, name: str) -> Optional[str]:
        if self.available(name):
            return None
        return self._owners.get(name)

    def rent_price(self, name: str, duration: int) -> Price:
        if not self.valid(name):
            raise RegistrarError(f"Invalid name: {name!r}")
        premium = self._premiums.get(name, 0) if self.available(name) else 0
        return Price(base=self._price_per_second * duration, premium=premium)

    def register(
        self, request: RegistrationRequest, *, payer: str, value: int,
    ) -> int:
        if not self.available(request.name):
            raise RegistrarError(f"Name not available: {request.name!r}")
        self._collect(request.name, request.duration, payer, value)
        self._expiries[request.name] = self._clock() + request.duration
        self._owners[request.name] = normalize_identity(request.owner)
        return token_id(request.name)

    def renew(self, name: str, duration: int, *, payer: str, value: int) -> None:
        validate_duration(duration)
        if name not in self._expiries or self.available(name):
            raise RegistrarError(f"Name not registered: {name!r}")
        self._collect(name, duration, payer, value)
        self._expiries[name] += duration

    def _collect(self, name: str, duration: int, payer: str, value: int) -> None:
        price = self.rent_price(name, duration)
        if value < price.total:
            raise RegistrarError(
                f"Insufficient value for {name!r}: got {value}, need {price.total}"
            )
        try:
            self._rail.transfer(payer, self._address, value)
        except TransferFailedError as exc:
            raise RegistrarError(f"Payment for {name!r} failed: {exc}") from exc

    def snapshot(self) -> tuple:
        return dict(self._expiries), dict(self._owners)

    def restore(self, state: tuple) -> None:
        expiries, owners = state
        self._expiries = dict(expiries)
        self._owners = dict(owners)
