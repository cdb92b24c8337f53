"""Program ownership — explicit owner checks for privileged operations.

Every privileged operation calls require_owner(caller) before doing
anything else, so an unauthorised call fails with no side effects.
"""

from __future__ import annotations

from referrals.errors import UnauthorizedError
from referrals.models.referral import ZERO_ADDRESS, normalize_identity


class Ownership:
    """Holds the owner identity shared by a program's components."""

    def __init__(self, owner: str) -> None:
        owner = normalize_identity(owner)
        if owner == ZERO_ADDRESS:
            raise ValueError("Owner must not be the zero address")
        self._owner = owner

    @property
    def owner(self) -> str:
        return self._owner

    def is_owner(self, caller: str) -> bool:
        return normalize_identity(caller) == self._owner

    def require_owner(self, caller: str) -> None:
        if not self.is_owner(caller):
            raise UnauthorizedError(
                f"Caller {normalize_identity(caller)} is not the owner"
            )

    def transfer(self, caller: str, new_owner: str) -> str:
        """Hand ownership to new_owner and return the previous owner."""
        self.require_owner(caller)
        new_owner = normalize_identity(new_owner)
        if new_owner == ZERO_ADDRESS:
            raise ValueError("New owner must not be the zero address")
        previous, self._owner = self._owner, new_owner
        return previous
