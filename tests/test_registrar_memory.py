"""Tests for the in-memory registrar and value rail."""

import pytest

from eth_utils import keccak, to_checksum_address

from referrals.errors import RegistrarError, TransferFailedError
from referrals.models.referral import ONE_YEAR, ZERO_ADDRESS, Price, RegistrationRequest
from referrals.registrar.memory import InMemoryRegistrar, InMemoryValueRail, token_id


def _addr(n: int) -> str:
    return to_checksum_address(f"0x{n:040x}")


PAYER = _addr(1)
REGISTRAR = _addr(2)


class Clock:
    def __init__(self, now: int) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


def _request(name: str = "alice", duration: int = ONE_YEAR) -> RegistrationRequest:
    return RegistrationRequest(
        name=name,
        owner=PAYER,
        secret=b"\x00" * 32,
        subregistry=ZERO_ADDRESS,
        resolver=ZERO_ADDRESS,
        flags=0,
        duration=duration,
    )


def _registrar(clock: Clock) -> tuple:
    rail = InMemoryValueRail()
    rail.mint(PAYER, 10**12)
    return InMemoryRegistrar(rail, REGISTRAR, price_per_second=2, clock=clock), rail


class TestInMemoryValueRail:
    def test_transfer(self) -> None:
        rail = InMemoryValueRail()
        rail.mint(PAYER, 10)
        rail.transfer(PAYER, REGISTRAR, 4)
        assert rail.balance_of(PAYER) == 6
        assert rail.balance_of(REGISTRAR) == 4

    def test_overdraw(self) -> None:
        rail = InMemoryValueRail()
        with pytest.raises(TransferFailedError, match="Insufficient balance"):
            rail.transfer(PAYER, REGISTRAR, 1)

    def test_unbounded_gas_ignores_receive_cost(self) -> None:
        rail = InMemoryValueRail()
        rail.mint(PAYER, 10)
        rail.set_receive_cost(REGISTRAR, 10**9)
        rail.transfer(PAYER, REGISTRAR, 10, gas_limit=None)
        assert rail.balance_of(REGISTRAR) == 10


class TestInMemoryRegistrar:
    def test_token_id_is_label_hash(self) -> None:
        assert token_id("alice") == int.from_bytes(keccak(text="alice"), "big")

    def test_premium_only_while_available(self) -> None:
        clock = Clock(1000)
        registrar, _ = _registrar(clock)
        registrar.set_premium("alice", 500)
        assert registrar.rent_price("alice", 10) == Price(base=20, premium=500)
        registrar.register(_request(), payer=PAYER, value=2 * ONE_YEAR + 500)
        assert registrar.rent_price("alice", 10) == Price(base=20, premium=0)

    def test_name_becomes_available_after_expiry(self) -> None:
        clock = Clock(1000)
        registrar, _ = _registrar(clock)
        registrar.register(_request(), payer=PAYER, value=2 * ONE_YEAR)
        assert not registrar.available("alice")
        clock.now += ONE_YEAR
        assert registrar.available("alice")
        assert registrar.owner_of("alice") is None

    def test_underpayment_rejected(self) -> None:
        registrar, rail = _registrar(Clock(1000))
        with pytest.raises(RegistrarError, match="Insufficient value"):
            registrar.register(_request(), payer=PAYER, value=2 * ONE_YEAR - 1)
        assert rail.balance_of(REGISTRAR) == 0

    def test_renew_unregistered(self) -> None:
        registrar, _ = _registrar(Clock(1000))
        with pytest.raises(RegistrarError, match="not registered"):
            registrar.renew("alice", ONE_YEAR, payer=PAYER, value=2 * ONE_YEAR)

    def test_snapshot_restore(self) -> None:
        registrar, _ = _registrar(Clock(1000))
        state = registrar.snapshot()
        registrar.register(_request(), payer=PAYER, value=2 * ONE_YEAR)
        registrar.restore(state)
        assert registrar.available("alice")
