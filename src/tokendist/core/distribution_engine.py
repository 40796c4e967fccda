"""
Distribution Engine

Resumable, budget-bounded state machine that walks the three beneficiary
classes and later drives the post-sale stages.

Every driver takes ``min_budget``: a unit of work is attempted only while
the call's gas meter still has at least that much left. The cursors in
``DistributionProgress`` advance after each unit and are never rewound, so
a driver can be called as many times as needed and resumes exactly where
the previous committed call stopped.

Units of work (see ``constants`` for their gas cost):
- distribution: reserve escrow, one shareholder escrow, one contributor payment
- shareholder recovery: one record inspected (plus one escrow recovery)
- bonus: one contributor paid
- unused-fund recovery: one contributor inspected (plus one forced redirect)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from tokendist.core import bonus_schedule
from tokendist.core.access import Ownable
from tokendist.core.addresses import normalize_address
from tokendist.core.constants import (
    ESCROW_UNIT_GAS,
    FINALIZE_GAS,
    PAYMENT_UNIT_GAS,
    RECORD_SCAN_GAS,
    RECOVER_UNIT_GAS,
    REDIRECT_UNIT_GAS,
)
from tokendist.core.exceptions import (
    AlreadyDoneError,
    DistributionClosedError,
    InvalidStateError,
    NoMatchingShareholderError,
    NoProgressError,
    NotFoundError,
    NothingToRecoverError,
)
from tokendist.core.runtime import BatchResult, require_positive_budget

if TYPE_CHECKING:
    from tokendist.core.allocation_source import AllocationSource
    from tokendist.core.config import DistributionConfig
    from tokendist.core.contracts.token import DistributionToken
    from tokendist.core.contracts.vesting import VestingAccount, VestingRegistry
    from tokendist.core.redemption_ledger import RedemptionLedger
    from tokendist.core.runtime import CallContext

logger = logging.getLogger(__name__)


class RecordKind(str, Enum):
    RESERVE_ENTITY = "reserve_entity"
    SHAREHOLDER = "shareholder"
    CONTRIBUTOR = "contributor"


class DistributionPhase(str, Enum):
    NOT_STARTED = "not_started"
    RESERVE_DONE = "reserve_done"
    SHAREHOLDERS_IN_PROGRESS = "shareholders_in_progress"
    CONTRIBUTORS_IN_PROGRESS = "contributors_in_progress"
    CLOSED = "closed"


@dataclass
class DistributionRecord:
    """One completed allocation. Only ``beneficiary`` is ever rewritten."""

    beneficiary: str | None
    escrow: str | None
    amount: int
    kind: RecordKind

    def to_dict(self) -> dict[str, Any]:
        return {
            "beneficiary": self.beneficiary,
            "escrow": self.escrow,
            "amount": self.amount,
            "kind": self.kind.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DistributionRecord":
        return cls(
            beneficiary=data["beneficiary"],
            escrow=data["escrow"],
            amount=int(data["amount"]),
            kind=RecordKind(data["kind"]),
        )


@dataclass
class DistributionProgress:
    """Process-wide checkpoint of every scan cursor."""

    phase: DistributionPhase = DistributionPhase.NOT_STARTED
    shareholder_index: int = 0
    contributor_index: int = 0
    bonus_stage: int = 0
    bonus_contributor_index: int = 0
    shareholder_recovery_index: int = 0
    contributor_recovery_index: int = 0
    distribution_start: int | None = None
    funds_recovered: bool = False

    @property
    def closed(self) -> bool:
        return self.phase is DistributionPhase.CLOSED

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["phase"] = self.phase.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DistributionProgress":
        values = dict(data)
        values["phase"] = DistributionPhase(values["phase"])
        return cls(**values)


class DistributionEngine:
    """
    Allocates the supply it holds and drives bonuses and recovery.

    The engine is the token's manager: its transfers follow redemption
    redirects, and it alone may register contributors on the ledger.
    """

    def __init__(
        self,
        address: str,
        token: "DistributionToken",
        ledger: "RedemptionLedger",
        vesting: "VestingRegistry",
        source: "AllocationSource",
        owner: Ownable,
        config: "DistributionConfig",
    ):
        self.address = normalize_address(address)
        self.token = token
        self.ledger = ledger
        self.vesting = vesting
        self.source = source
        self.owner = owner
        self.config = config

        self.records: list[DistributionRecord] = []
        self.progress = DistributionProgress()

    # ==================== Views ====================

    @property
    def contributors(self) -> list[str]:
        """Contributor identities in payment order."""
        return [r.beneficiary for r in self.records if r.kind is RecordKind.CONTRIBUTOR]

    @property
    def reserve_entity(self) -> str | None:
        if not self.records:
            return None
        return self.records[0].beneficiary

    def escrow_of(self, record_index: int) -> "VestingAccount":
        try:
            record = self.records[record_index]
        except IndexError:
            raise NotFoundError(f"No distribution record at index {record_index}") from None
        if record.escrow is None:
            raise NotFoundError(
                f"Distribution record {record_index} has no escrow",
                details={"kind": record.kind.value},
            )
        return self.vesting.get(record.escrow)

    def status(self) -> dict[str, Any]:
        progress = self.progress
        next_bonus = None
        if progress.distribution_start is not None and progress.bonus_stage < bonus_schedule.STAGE_COUNT:
            next_bonus = bonus_schedule.stage_deadline(progress.distribution_start, progress.bonus_stage)
        return {
            "engine": self.address,
            "token": self.token.address,
            "progress": progress.to_dict(),
            "records": len(self.records),
            "shareholders": {"done": progress.shareholder_index, "total": self.source.shareholder_count()},
            "contributors": {"done": progress.contributor_index, "total": self.source.contributor_count()},
            "next_bonus_deadline": next_bonus,
            "redemption_window_end": self.ledger.window_end,
            "engine_balance": self.token.balance_of(self.address),
            "transfers_enabled": self.token.transfers_enabled,
        }

    # ==================== Distribution ====================

    def advance_distribution(self, ctx: "CallContext", min_budget: int) -> BatchResult:
        """
        Allocate to the next beneficiaries while the budget allows.

        The last call also closes the distribution and opens token transfers.

        Raises:
            DistributionClosedError: The distribution already closed
            NoProgressError: Not a single unit fit in the budget
        """
        require_positive_budget(min_budget)
        if self.progress.closed:
            raise DistributionClosedError("Distribution already closed")

        units = 0
        while ctx.gas.has_budget(min_budget):
            if self.progress.phase is DistributionPhase.NOT_STARTED:
                self._allocate_reserve(ctx)
            elif self.progress.shareholder_index < self.source.shareholder_count():
                self._allocate_shareholder(ctx)
            elif self.progress.contributor_index < self.source.contributor_count():
                self._pay_contributor(ctx)
            else:
                self._close(ctx)
                return BatchResult(units=units, finished=True)
            units += 1

        if units == 0:
            raise NoProgressError(
                "Budget too small to allocate a single beneficiary",
                details={"min_budget": min_budget, "gas_remaining": ctx.gas.remaining},
            )
        logger.info(
            "Distribution advanced by %d units",
            units,
            extra={"event": "engine.advance", "units": units, "phase": self.progress.phase.value},
        )
        return BatchResult(units=units, finished=False)

    def _allocate_reserve(self, ctx: "CallContext") -> None:
        ctx.gas.consume(ESCROW_UNIT_GAS, "reserve escrow")
        allocation = self.source.reserve_entity_allocation()
        start = ctx.timestamp + self.config.grace_period

        self.progress.distribution_start = start
        self.ledger.open_redemption_window(ctx.forward(self.address), start)
        account = self._fund_escrow(allocation.address, allocation.amount, start, self.config.reserve_vesting)
        self.records.append(
            DistributionRecord(allocation.address, account.address, allocation.amount, RecordKind.RESERVE_ENTITY)
        )
        self.progress.phase = DistributionPhase.RESERVE_DONE
        logger.info(
            "Reserve entity allocated; distribution starts at %d",
            start,
            extra={"event": "engine.reserve_allocated", "escrow": account.address, "amount": allocation.amount},
        )

    def _allocate_shareholder(self, ctx: "CallContext") -> None:
        ctx.gas.consume(ESCROW_UNIT_GAS, "shareholder escrow")
        allocation = self.source.shareholder_at(self.progress.shareholder_index)
        account = self._fund_escrow(
            allocation.address,
            allocation.amount,
            self.progress.distribution_start,
            self.config.shareholder_vesting,
        )
        self.records.append(
            DistributionRecord(allocation.address, account.address, allocation.amount, RecordKind.SHAREHOLDER)
        )
        self.progress.shareholder_index += 1
        self.progress.phase = DistributionPhase.SHAREHOLDERS_IN_PROGRESS

    def _pay_contributor(self, ctx: "CallContext") -> None:
        ctx.gas.consume(PAYMENT_UNIT_GAS, "contributor payment")
        allocation = self.source.contributor_at(self.progress.contributor_index)
        self.token.transfer(self.address, allocation.address, allocation.amount)
        self.ledger.register_contributor(ctx.forward(self.address), allocation.address, allocation.amount)
        self.records.append(
            DistributionRecord(allocation.address, None, allocation.amount, RecordKind.CONTRIBUTOR)
        )
        self.progress.contributor_index += 1
        self.progress.phase = DistributionPhase.CONTRIBUTORS_IN_PROGRESS

    def _fund_escrow(self, beneficiary, amount, start, terms) -> "VestingAccount":
        account = self.vesting.create(
            owner=self.address,
            beneficiary=beneficiary,
            start=start,
            terms=terms,
            recovery_deadline=self.config.shareholder_recovery_deadline,
        )
        self.token.allow_sender(self.address, account.address)
        self.token.transfer(self.address, account.address, amount)
        return account

    def _close(self, ctx: "CallContext") -> None:
        ctx.gas.consume(FINALIZE_GAS, "close distribution")
        self.token.enable_transfers(self.address)
        self.progress.phase = DistributionPhase.CLOSED
        logger.info(
            "Distribution closed",
            extra={"event": "engine.closed", "records": len(self.records)},
        )

    # ==================== Shareholders ====================

    def bind_shareholder_beneficiary(self, ctx: "CallContext", amount: int, address: str) -> int:
        """
        Bind the first unassigned shareholder escrow of ``amount`` to ``address``.

        Returns:
            Index of the bound record
        """
        self.owner.require_owner(ctx.caller)
        beneficiary = normalize_address(address)
        for index, record in enumerate(self.records):
            if record.kind is RecordKind.SHAREHOLDER and record.beneficiary is None and record.amount == amount:
                self.vesting.get(record.escrow).set_beneficiary(ctx.forward(self.address), beneficiary)
                record.beneficiary = beneficiary
                logger.info(
                    "Shareholder escrow bound",
                    extra={"event": "engine.shareholder_bound", "record": index, "beneficiary": beneficiary},
                )
                return index
        raise NoMatchingShareholderError(
            f"No unassigned shareholder allocation of {amount}",
            details={"amount": amount},
        )

    def recover_unassigned_shareholders(self, ctx: "CallContext", min_budget: int) -> BatchResult:
        """Recover escrows still unassigned past their deadline back to the engine."""
        require_positive_budget(min_budget)
        self._require_closed("Shareholder recovery")
        if self.progress.shareholder_recovery_index >= len(self.records):
            raise NothingToRecoverError("Shareholder recovery scan already finished")

        units = 0
        recovered = 0
        while self.progress.shareholder_recovery_index < len(self.records) and ctx.gas.has_budget(min_budget):
            ctx.gas.consume(RECORD_SCAN_GAS, "record scan")
            record = self.records[self.progress.shareholder_recovery_index]
            if record.kind is RecordKind.SHAREHOLDER and record.beneficiary is None:
                ctx.gas.consume(RECOVER_UNIT_GAS, "escrow recovery")
                self.vesting.get(record.escrow).recover(ctx.forward(self.address))
                record.beneficiary = self.address
                recovered += 1
            self.progress.shareholder_recovery_index += 1
            units += 1

        if units == 0:
            raise NoProgressError(
                "Budget too small to inspect a single record",
                details={"min_budget": min_budget, "gas_remaining": ctx.gas.remaining},
            )
        finished = self.progress.shareholder_recovery_index >= len(self.records)
        logger.info(
            "Shareholder recovery scanned %d records",
            units,
            extra={"event": "engine.shareholders_recovered", "recovered": recovered, "finished": finished},
        )
        return BatchResult(units=units, finished=finished)

    # ==================== Bonus ====================

    def pay_bonus_stage(self, ctx: "CallContext", min_budget: int) -> BatchResult:
        """
        Pay the current bonus stage to the next contributors.

        Each contributor receives the stage percentage of the tracked minimum
        of its redirect target, delivered to that target. A failed payment
        aborts the whole call.

        Raises:
            InvalidStateError: Before close, before the deadline, or after the last stage
        """
        require_positive_budget(min_budget)
        self._require_closed("Bonus payment")
        progress = self.progress
        stage = progress.bonus_stage
        if stage >= bonus_schedule.STAGE_COUNT:
            raise InvalidStateError(
                "All bonus stages have been paid",
                details={"stage": stage},
                recoverable=False,
            )
        deadline = bonus_schedule.stage_deadline(progress.distribution_start, stage)
        if ctx.timestamp < deadline:
            raise InvalidStateError(
                f"Bonus stage {stage} is not payable yet",
                details={"stage": stage, "deadline": deadline, "now": ctx.timestamp},
            )

        contributors = self.contributors
        units = 0
        paid = 0
        while progress.bonus_contributor_index < len(contributors) and ctx.gas.has_budget(min_budget):
            ctx.gas.consume(PAYMENT_UNIT_GAS, "bonus payment")
            contributor = contributors[progress.bonus_contributor_index]
            target = self.ledger.resolve(contributor)
            amount = bonus_schedule.bonus_amount(self.ledger.minimum_retained_balance(target), stage)
            if amount:
                self.token.transfer(self.address, contributor, amount)
                paid += amount
            progress.bonus_contributor_index += 1
            units += 1

        finished = progress.bonus_contributor_index >= len(contributors)
        if units == 0 and not finished:
            raise NoProgressError(
                "Budget too small to pay a single bonus",
                details={"min_budget": min_budget, "gas_remaining": ctx.gas.remaining},
            )
        if finished:
            progress.bonus_stage += 1
            progress.bonus_contributor_index = 0
        logger.info(
            "Bonus stage %d paid %d to %d contributors",
            stage,
            paid,
            units,
            extra={"event": "engine.bonus_paid", "stage": stage, "amount": paid, "finished": finished},
        )
        if finished and bonus_schedule.is_final(stage):
            logger.info(
                "All %d bonus stages paid",
                bonus_schedule.STAGE_COUNT,
                extra={"event": "engine.bonus_complete", "stage": stage},
            )
        return BatchResult(units=units, finished=finished)

    # ==================== Unused funds ====================

    def recover_unused_funds(self, ctx: "CallContext", min_budget: int) -> BatchResult:
        """
        Redirect never-redeemed contributors to the reserve entity.

        When the scan completes, the token's manager relationship is disabled
        and the engine's residual balance is swept to the reserve entity.
        """
        require_positive_budget(min_budget)
        progress = self.progress
        if progress.funds_recovered:
            raise AlreadyDoneError("Unused funds were already recovered")
        self._require_closed("Unused-fund recovery")
        if progress.bonus_stage < bonus_schedule.STAGE_COUNT:
            raise InvalidStateError(
                "Unused funds can only be recovered after every bonus stage",
                details={"bonus_stage": progress.bonus_stage},
            )
        window_end = progress.distribution_start + self.config.redemption_window
        if ctx.timestamp < window_end:
            raise InvalidStateError(
                "Redemption window has not ended",
                details={"window_end": window_end, "now": ctx.timestamp},
            )

        reserve = self.reserve_entity
        contributors = self.contributors
        units = 0
        redirected = 0
        while progress.contributor_recovery_index < len(contributors) and ctx.gas.has_budget(min_budget):
            ctx.gas.consume(RECORD_SCAN_GAS, "contributor scan")
            contributor = contributors[progress.contributor_recovery_index]
            if not self.ledger.is_redeemed(contributor):
                ctx.gas.consume(REDIRECT_UNIT_GAS, "forced redirect")
                self.ledger.force_redirect(ctx.forward(self.address), contributor, reserve)
                redirected += 1
            progress.contributor_recovery_index += 1
            units += 1

        finished = False
        if progress.contributor_recovery_index >= len(contributors) and ctx.gas.has_budget(min_budget):
            self._sweep(ctx, reserve)
            finished = True
        if units == 0 and not finished:
            raise NoProgressError(
                "Budget too small to inspect a single contributor",
                details={"min_budget": min_budget, "gas_remaining": ctx.gas.remaining},
            )
        logger.info(
            "Unused-fund recovery redirected %d contributors",
            redirected,
            extra={"event": "engine.unused_funds", "units": units, "finished": finished},
        )
        return BatchResult(units=units, finished=finished)

    def _sweep(self, ctx: "CallContext", reserve: str) -> None:
        ctx.gas.consume(FINALIZE_GAS, "sweep")
        self.token.disable_manager(self.address)
        residual = self.token.balance_of(self.address)
        if residual:
            self.token.transfer(self.address, reserve, residual)
        self.progress.funds_recovered = True
        logger.info(
            "Residual balance swept to reserve entity",
            extra={"event": "engine.swept", "amount": residual, "reserve": reserve},
        )

    def _require_closed(self, operation: str) -> None:
        if not self.progress.closed:
            raise InvalidStateError(
                f"{operation} requires a closed distribution",
                details={"phase": self.progress.phase.value},
            )

    # ==================== Serialization ====================

    def state_dict(self) -> dict[str, Any]:
        return {
            "records": [record.to_dict() for record in self.records],
            "progress": self.progress.to_dict(),
        }

    def load_state_dict(self, data: dict[str, Any]) -> None:
        self.records = [DistributionRecord.from_dict(entry) for entry in data.get("records", [])]
        self.progress = DistributionProgress.from_dict(data["progress"])
