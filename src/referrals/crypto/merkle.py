"""Merkle allowlist tree over referrer addresses.

Uses keccak-256 so roots and proofs match the on-chain verifier. A leaf is
keccak256 of the 20-byte address. Parents hash the sorted pair
keccak256(min(a, b) || max(a, b)), so a proof is just the ordered list of
sibling hashes with no left/right markers.

Leaves are sorted before tree construction to ensure determinism
(canonical ordering). Odd levels duplicate their last node.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from eth_utils import keccak, to_canonical_address

from referrals.models.referral import normalize_identity


HASH_LENGTH = 32
EMPTY_ROOT = keccak(b"")


def leaf_hash(address: str) -> bytes:
    """Hash an address into its leaf value."""
    return keccak(to_canonical_address(normalize_identity(address)))


def hash_pair(a: bytes, b: bytes) -> bytes:
    """Hash two nodes in sorted order."""
    if a <= b:
        return keccak(a + b)
    return keccak(b + a)


def process_proof(proof: Sequence[bytes], leaf: bytes) -> bytes:
    """Fold the sibling hashes over the leaf and return the resulting root."""
    computed = leaf
    for sibling in proof:
        if len(sibling) != HASH_LENGTH:
            raise ValueError(
                f"Proof elements must be {HASH_LENGTH} bytes, got {len(sibling)}"
            )
        computed = hash_pair(computed, sibling)
    return computed


def verify(proof: Sequence[bytes], root: bytes, address: str) -> bool:
    """Whether the proof reconstructs root starting from hash(address)."""
    return process_proof(proof, leaf_hash(address)) == root


class AllowlistTree:
    """A deterministic Merkle tree over a set of addresses.

    Usage:
        tree = AllowlistTree(["0xabc...", "0xdef..."])
        root = tree.root
        proof = tree.proof("0xabc...")
        assert verify(proof, root, "0xabc...")
    """

    def __init__(self, addresses: Iterable[str]) -> None:
        leaves = {leaf_hash(a) for a in addresses}
        self._levels: list[list[bytes]] = []
        if leaves:
            self._build(sorted(leaves))

    def _build(self, sorted_leaves: list[bytes]) -> None:
        self._levels = [sorted_leaves]
        current_level = sorted_leaves
        while len(current_level) > 1:
            next_level: list[bytes] = []
            for i in range(0, len(current_level), 2):
                left = current_level[i]
                right = current_level[i + 1] if i + 1 < len(current_level) else left
                next_level.append(hash_pair(left, right))
            self._levels.append(next_level)
            current_level = next_level

    @property
    def leaf_count(self) -> int:
        return len(self._levels[0]) if self._levels else 0

    @property
    def root(self) -> bytes:
        """The commitment. An empty tree commits to keccak256 of nothing."""
        if not self._levels:
            return EMPTY_ROOT
        return self._levels[-1][0]

    def contains(self, address: str) -> bool:
        return self.leaf_count > 0 and leaf_hash(address) in self._levels[0]

    def proof(self, address: str) -> list[bytes] | None:
        """Generate the sibling path for an address.

        Returns None if the address is not in the tree.
        """
        if not self.contains(address):
            return None

        idx = self._levels[0].index(leaf_hash(address))
        path: list[bytes] = []
        for level in self._levels[:-1]:
            if idx % 2 == 0:
                sibling_idx = idx + 1
                if sibling_idx < len(level):
                    path.append(level[sibling_idx])
                else:
                    path.append(level[idx])  # Duplicate
            else:
                path.append(level[idx - 1])
            idx //= 2
        return path
