"""
Installment vesting escrows.

A vesting account holds tokens for a beneficiary and releases them in
equal installment units: ``initial_installments`` units are available from
the start, ``cliff_installments`` more unlock together at the cliff, and one
further unit unlocks per ``installment_duration`` afterwards until ``end``,
when the whole balance is vested.

The beneficiary may be left unset at creation. The owner binds it before
``start + recovery_deadline``; after that the owner can only recover the
account to itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from tokendist.core.access import require_caller
from tokendist.core.addresses import contract_address, normalize_address
from tokendist.core.constants import VESTING_ADDRESS_LABEL
from tokendist.core.exceptions import (
    BeneficiaryAlreadySetError,
    InsufficientVestedError,
    InvalidStateError,
    NotFoundError,
)

if TYPE_CHECKING:
    from tokendist.core.config import VestingTerms
    from tokendist.core.contracts.token import DistributionToken
    from tokendist.core.runtime import CallContext

logger = logging.getLogger(__name__)


@dataclass
class VestingAccount:
    address: str
    token: "DistributionToken" = field(repr=False)
    owner: str
    beneficiary: str | None
    start: int
    cliff_end: int
    end: int
    initial_installments: int
    cliff_installments: int
    post_cliff_installments: int
    installment_duration: int
    recovery_deadline: int
    released: int = 0

    def __post_init__(self) -> None:
        if self.installment_duration <= 0:
            raise ValueError("Installment duration must be positive.")
        if min(self.initial_installments, self.cliff_installments, self.post_cliff_installments) < 0:
            raise ValueError("Installment counts cannot be negative.")
        if self.total_installments == 0:
            raise ValueError("A vesting account needs at least one installment.")
        if not self.start <= self.cliff_end <= self.end:
            raise ValueError("Vesting times must satisfy start <= cliff_end <= end.")

    @classmethod
    def from_terms(
        cls,
        address: str,
        token: "DistributionToken",
        owner: str,
        beneficiary: str | None,
        start: int,
        terms: "VestingTerms",
        recovery_deadline: int,
    ) -> "VestingAccount":
        """Lay out cliff and end times from installment counts."""
        cliff_end = start + terms.cliff_installments * terms.installment_duration
        end = cliff_end + terms.post_cliff_installments * terms.installment_duration
        return cls(
            address=address,
            token=token,
            owner=owner,
            beneficiary=beneficiary,
            start=start,
            cliff_end=cliff_end,
            end=end,
            initial_installments=terms.initial_installments,
            cliff_installments=terms.cliff_installments,
            post_cliff_installments=terms.post_cliff_installments,
            installment_duration=terms.installment_duration,
            recovery_deadline=recovery_deadline,
        )

    @property
    def total_installments(self) -> int:
        return self.initial_installments + self.cliff_installments + self.post_cliff_installments

    def total_allocation(self) -> int:
        """Deposited balance: what is still held plus what was already released."""
        return self.token.balance_of(self.address) + self.released

    def vested_amount(self, now: int) -> int:
        """
        Calculates the amount of tokens vested as of ``now``.

        Never decreases with time and never exceeds ``total_allocation()``.
        """
        total = self.total_allocation()
        if now >= self.end:
            return total
        if now < self.cliff_end:
            units = self.initial_installments
        else:
            elapsed = (now - self.cliff_end) // self.installment_duration
            units = self.initial_installments + self.cliff_installments + elapsed
        units = min(units, self.total_installments)
        return total * units // self.total_installments

    def releasable_amount(self, now: int) -> int:
        return self.vested_amount(now) - self.released

    def release(self, ctx: "CallContext") -> int:
        """
        Transfer everything vested but not yet released to the beneficiary.

        Returns:
            Amount released

        Raises:
            InsufficientVestedError: If nothing is releasable or no beneficiary is bound
        """
        if self.beneficiary is None:
            raise InsufficientVestedError(
                "Vesting account has no beneficiary yet",
                details={"account": self.address},
            )
        releasable = self.releasable_amount(ctx.timestamp)
        if releasable <= 0:
            raise InsufficientVestedError(
                "No vested tokens to release",
                details={"account": self.address, "released": self.released},
            )

        self.token.transfer(self.address, self.beneficiary, releasable)
        self.released += releasable
        logger.info(
            "Released %d vested tokens from %s",
            releasable,
            self.address,
            extra={
                "event": "vesting.release",
                "account": self.address,
                "beneficiary": self.beneficiary,
                "amount": releasable,
                "released_total": self.released,
            },
        )
        return releasable

    def set_beneficiary(self, ctx: "CallContext", beneficiary: str) -> None:
        """Bind the beneficiary (owner only, once, before the recovery deadline)."""
        require_caller(ctx.caller, self.owner, "vesting owner")
        if self.beneficiary is not None:
            raise BeneficiaryAlreadySetError(
                "Vesting account beneficiary already set",
                details={"account": self.address, "beneficiary": self.beneficiary},
            )
        if ctx.timestamp >= self.start + self.recovery_deadline:
            raise InvalidStateError(
                "Beneficiary assignment deadline has passed",
                details={"account": self.address, "deadline": self.start + self.recovery_deadline},
                recoverable=False,
            )
        self.beneficiary = normalize_address(beneficiary)
        logger.info(
            "Vesting beneficiary set",
            extra={"event": "vesting.beneficiary_set", "account": self.address, "beneficiary": self.beneficiary},
        )

    def recover(self, ctx: "CallContext") -> None:
        """Bind an unassigned account to its owner once the deadline has passed."""
        require_caller(ctx.caller, self.owner, "vesting owner")
        if self.beneficiary is not None:
            raise BeneficiaryAlreadySetError(
                "Vesting account beneficiary already set",
                details={"account": self.address, "beneficiary": self.beneficiary},
            )
        if ctx.timestamp < self.start + self.recovery_deadline:
            raise InvalidStateError(
                "Vesting account cannot be recovered before its deadline",
                details={"account": self.address, "deadline": self.start + self.recovery_deadline},
            )
        self.beneficiary = self.owner
        logger.info(
            "Vesting account recovered to owner",
            extra={"event": "vesting.recovered", "account": self.address, "owner": self.owner},
        )

    def state_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "owner": self.owner,
            "beneficiary": self.beneficiary,
            "start": self.start,
            "cliff_end": self.cliff_end,
            "end": self.end,
            "initial_installments": self.initial_installments,
            "cliff_installments": self.cliff_installments,
            "post_cliff_installments": self.post_cliff_installments,
            "installment_duration": self.installment_duration,
            "recovery_deadline": self.recovery_deadline,
            "released": self.released,
        }


class VestingRegistry:
    """Creates vesting accounts at deterministic addresses and owns their state."""

    def __init__(self, token: "DistributionToken"):
        self.token = token
        self.accounts: dict[str, VestingAccount] = {}

    def __len__(self) -> int:
        return len(self.accounts)

    def create(
        self,
        owner: str,
        beneficiary: str | None,
        start: int,
        terms: "VestingTerms",
        recovery_deadline: int,
    ) -> VestingAccount:
        address = contract_address(VESTING_ADDRESS_LABEL, self.token.address, len(self.accounts))
        account = VestingAccount.from_terms(
            address=address,
            token=self.token,
            owner=owner,
            beneficiary=normalize_address(beneficiary) if beneficiary else None,
            start=start,
            terms=terms,
            recovery_deadline=recovery_deadline,
        )
        self.accounts[address] = account
        logger.debug(
            "Vesting account created",
            extra={"event": "vesting.created", "account": address, "beneficiary": account.beneficiary},
        )
        return account

    def get(self, address: str) -> VestingAccount:
        account = self.accounts.get(address.lower())
        if account is None:
            raise NotFoundError(f"Vesting account {address} not found")
        return account

    def state_dict(self) -> list[dict[str, Any]]:
        return [account.state_dict() for account in self.accounts.values()]

    def load_state_dict(self, data: list[dict[str, Any]]) -> None:
        """Restore accounts in place; accounts absent from ``data`` are dropped."""
        restored: dict[str, VestingAccount] = {}
        for entry in data:
            account = self.accounts.get(entry["address"])
            if account is None:
                account = VestingAccount(token=self.token, **entry)
            else:
                for key, value in entry.items():
                    setattr(account, key, value)
            restored[account.address] = account
        self.accounts = restored
