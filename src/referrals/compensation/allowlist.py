"""Allowlist verifier — Merkle membership of referrers.

The owner publishes a single root committing to the set of permitted
referrers. Callers supply the membership proof per call, ABI-encoded as
bytes32[] in the referrer data; nothing about the proof is stored.

Updating the root takes effect immediately: proofs against the old root
stop verifying on the next evaluation. There is no grace period and no
versioning.
"""

from __future__ import annotations

from typing import Sequence, Union

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import to_bytes

from referrals.crypto import merkle
from referrals.errors import MalformedReferrerDataError
from referrals.ownership import Ownership


RootLike = Union[bytes, str]


def normalize_root(root: RootLike) -> bytes:
    """Accept a 32-byte value or its 0x-prefixed hex form."""
    value = to_bytes(hexstr=root) if isinstance(root, str) else bytes(root)
    if len(value) != merkle.HASH_LENGTH:
        raise ValueError(f"Root must be {merkle.HASH_LENGTH} bytes, got {len(value)}")
    return value


def encode_proof(proof: Sequence[bytes]) -> bytes:
    """ABI-encode a proof as bytes32[] for use as referrer data."""
    return encode(["bytes32[]"], [list(proof)])


def decode_proof(referrer_data: bytes) -> list[bytes]:
    """Decode bytes32[] from referrer data.

    Empty data is the empty proof.

    Raises:
        MalformedReferrerDataError: If the data is not a valid bytes32[].
    """
    if not referrer_data:
        return []
    try:
        (proof,) = decode(["bytes32[]"], bytes(referrer_data))
    except (DecodingError, OverflowError) as exc:
        raise MalformedReferrerDataError(
            f"Referrer data is not an ABI-encoded bytes32[]: {exc}"
        ) from exc
    return list(proof)


class AllowlistVerifier:
    """Checks referrer membership against the owner's current root.

    Usage:
        verifier = AllowlistVerifier(ownership, tree.root)
        verifier.is_member(proof, referrer)
        verifier.update_root(owner, new_tree.root)
    """

    def __init__(self, ownership: Ownership, root: RootLike = merkle.EMPTY_ROOT) -> None:
        self._ownership = ownership
        self._root = normalize_root(root)

    @property
    def root(self) -> bytes:
        return self._root

    @staticmethod
    def verify(proof: Sequence[bytes], root: RootLike, referrer: str) -> bool:
        """Pure check of a proof against an explicit root."""
        return merkle.verify(proof, normalize_root(root), referrer)

    def is_member(self, proof: Sequence[bytes], referrer: str) -> bool:
        """Check a proof against the current root."""
        return merkle.verify(proof, self._root, referrer)

    def update_root(self, caller: str, new_root: RootLike) -> bytes:
        """Owner only: replace the commitment. Returns the new root."""
        self._ownership.require_owner(caller)
        self._root = normalize_root(new_root)
        return self._root
