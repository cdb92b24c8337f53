"""External collaborators — registrar controller and value rail."""

from referrals.registrar.base import RegistrarController, ValueRail
from referrals.registrar.memory import InMemoryRegistrar, InMemoryValueRail

__all__ = [
    "InMemoryRegistrar",
    "InMemoryValueRail",
    "RegistrarController",
    "ValueRail",
]
