"""Chain adapters — registrar controller over JSON-RPC."""

from referrals.chain.web3_registrar import Web3RegistrarController

__all__ = ["Web3RegistrarController"]
