"""On-chain registrar controller — prices and registers names over JSON-RPC.

Implements the RegistrarController contract against a deployed registrar
controller. Registration and renewal are sent as signed, value-bearing
transactions from the program's own account; each call is simulated
first so reverts surface before any gas is spent, then sent and awaited
for one confirmation. A reverted receipt raises RegistrarError.

The adapter settles each forwarded payment on the program's value rail
as well: the attached value moves from the payer to the controller on
the rail before the transaction is sent. The treasury balance the
program sees afterwards no longer includes it.

The chain is not rolled back by the program's atomic operation: once a
transaction is mined it stays mined. Only use this adapter where the
steps after forwarding (refund, payout) cannot fail, e.g. with pull
payouts and exact payments.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from eth_account import Account
from web3 import HTTPProvider, Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from referrals.config import ChainSettings
from referrals.errors import RegistrarError, TransferFailedError
from referrals.models.referral import Price, RegistrationRequest, normalize_identity
from referrals.registrar.base import ValueRail

logger = logging.getLogger(__name__)


CONTROLLER_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "rentPrice",
        "stateMutability": "view",
        "inputs": [
            {"name": "label", "type": "string"},
            {"name": "duration", "type": "uint64"},
        ],
        "outputs": [
            {"name": "base", "type": "uint256"},
            {"name": "premium", "type": "uint256"},
        ],
    },
    {
        "type": "function",
        "name": "register",
        "stateMutability": "payable",
        "inputs": [
            {"name": "label", "type": "string"},
            {"name": "owner", "type": "address"},
            {"name": "secret", "type": "bytes32"},
            {"name": "subregistry", "type": "address"},
            {"name": "resolver", "type": "address"},
            {"name": "flags", "type": "uint96"},
            {"name": "duration", "type": "uint64"},
        ],
        "outputs": [{"name": "tokenId", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "renew",
        "stateMutability": "payable",
        "inputs": [
            {"name": "label", "type": "string"},
            {"name": "duration", "type": "uint64"},
        ],
        "outputs": [],
    },
]


class Web3RegistrarController:
    """RegistrarController backed by a deployed contract.

    Usage:
        settings = ChainSettings.from_env()
        rail = InMemoryValueRail()
        registrar = Web3RegistrarController.from_settings(settings, rail)
        program = ReferralProgram(registrar, rail, registrar.sender, ...)
        price = registrar.rent_price("alice", ONE_YEAR)
    """

    def __init__(
        self,
        w3: Web3,
        controller_address: str,
        private_key: str,
        chain_id: int,
        rail: ValueRail,
        contract: Optional[Any] = None,
        receipt_timeout: int = 300,
    ) -> None:
        self._w3 = w3
        self._account = Account.from_key(private_key)
        self._chain_id = chain_id
        self._rail = rail
        self._receipt_timeout = receipt_timeout
        self._contract = contract or w3.eth.contract(
            address=Web3.to_checksum_address(controller_address),
            abi=CONTROLLER_ABI,
        )
        self._controller_address = normalize_identity(controller_address)

    @classmethod
    def from_settings(
        cls, settings: ChainSettings, rail: ValueRail,
    ) -> Web3RegistrarController:
        w3 = Web3(HTTPProvider(settings.rpc_url))
        return cls(
            w3,
            settings.controller_address,
            settings.private_key,
            settings.chain_id,
            rail,
        )

    @property
    def address(self) -> str:
        return self._controller_address

    @property
    def sender(self) -> str:
        """The account that signs and pays for forwarded calls."""
        return normalize_identity(self._account.address)

    def rent_price(self, name: str, duration: int) -> Price:
        try:
            base, premium = self._contract.functions.rentPrice(name, duration).call()
        except ContractLogicError as exc:
            raise RegistrarError(f"Price quote for {name!r} reverted: {exc}") from exc
        return Price(base=base, premium=premium)

    def register(
        self, request: RegistrationRequest, *, payer: str, value: int,
    ) -> int:
        self._check_payer(payer)
        call = self._contract.functions.register(
            request.name,
            request.owner,
            request.secret,
            request.subregistry,
            request.resolver,
            request.flags,
            request.duration,
        )
        token_id = self._simulate(call, value, request.name)
        self._settle(payer, value, request.name)
        self._send(call, value, request.name)
        return token_id

    def renew(self, name: str, duration: int, *, payer: str, value: int) -> None:
        self._check_payer(payer)
        call = self._contract.functions.renew(name, duration)
        self._simulate(call, value, name)
        self._settle(payer, value, name)
        self._send(call, value, name)

    def _check_payer(self, payer: str) -> None:
        if normalize_identity(payer) != self.sender:
            raise RegistrarError(
                f"Payer {normalize_identity(payer)} is not the signing account {self.sender}"
            )

    def _settle(self, payer: str, value: int, name: str) -> None:
        if not value:
            return
        try:
            self._rail.transfer(payer, self.address, value)
        except TransferFailedError as exc:
            raise RegistrarError(f"Payment for {name!r} failed: {exc}") from exc

    def _simulate(self, call: Any, value: int, name: str) -> Any:
        try:
            return call.call({"from": self.sender, "value": value})
        except ContractLogicError as exc:
            raise RegistrarError(f"Call for {name!r} would revert: {exc}") from exc

    def _send(self, call: Any, value: int, name: str) -> str:
        tx = call.build_transaction({
            "from": self.sender,
            "value": value,
            "nonce": self._w3.eth.get_transaction_count(self.sender),
            "chainId": self._chain_id,
        })
        signed = self._account.sign_transaction(tx)
        tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
        logger.info("Sent %s for %r: %s", call.fn_name, name, tx_hash.hex())

        try:
            receipt = self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._receipt_timeout,
            )
        except TimeExhausted as exc:
            raise RegistrarError(f"No receipt for {tx_hash.hex()}: {exc}") from exc
        if receipt["status"] != 1:
            raise RegistrarError(
                f"Transaction {tx_hash.hex()} for {name!r} reverted in block "
                f"{receipt['blockNumber']}"
            )
        return tx_hash.hex()
