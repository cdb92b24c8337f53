"""Cryptographic primitives — keccak Merkle allowlist trees and proofs."""

from referrals.crypto.merkle import AllowlistTree, verify

__all__ = ["AllowlistTree", "verify"]
