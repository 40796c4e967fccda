"""
Authorization capabilities.

Contracts receive an ``Ownable`` (the administrative owner) and, where a
manager relationship exists, a manager address. Checks compare the
normalized caller from the call context.
"""

from __future__ import annotations

from dataclasses import dataclass

from tokendist.core.addresses import normalize_address
from tokendist.core.exceptions import UnauthorizedError


@dataclass
class Ownable:
    """Single-owner authorization capability."""

    owner: str

    def __post_init__(self) -> None:
        self.owner = normalize_address(self.owner)

    def is_owner(self, caller: str) -> bool:
        return caller.lower() == self.owner

    def require_owner(self, caller: str) -> None:
        """Require caller is owner."""
        if not self.is_owner(caller):
            raise UnauthorizedError(
                "Caller is not the owner",
                details={"caller": caller, "owner": self.owner},
            )


def require_caller(caller: str, expected: str, role: str) -> None:
    """Require the caller to be a specific contract/account address."""
    if caller.lower() != expected.lower():
        raise UnauthorizedError(
            f"Caller is not the {role}",
            details={"caller": caller, "expected": expected},
        )
