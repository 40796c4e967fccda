"""
Tests for the budget-bounded distribution state machine.
"""

import pytest

from conftest import ADMIN, LARGE_GAS, OUTSIDER, RESERVE, SHAREHOLDER, START, T0, make_deployment
from tokendist.core.constants import (
    DAY,
    ESCROW_UNIT_GAS,
    FINALIZE_GAS,
    PAYMENT_UNIT_GAS,
    RECORD_SCAN_GAS,
    RECOVER_UNIT_GAS,
)
from tokendist.core.distribution_engine import DistributionPhase, RecordKind
from tokendist.core.exceptions import (
    DistributionClosedError,
    InvalidStateError,
    NoMatchingShareholderError,
    NoProgressError,
    NotFoundError,
    NothingToRecoverError,
    OutOfGasError,
    UnauthorizedError,
)
from tokendist.core.runtime import AtomicExecutor

RECOVERY_DEADLINE = START + 180 * DAY
NEW_SHAREHOLDER = "0x" + "33" * 20


def advance(executor, engine, min_budget, gas, at=T0):
    return executor.call(engine.advance_distribution, min_budget, caller=OUTSIDER, timestamp=at, gas_limit=gas)


class TestAdvanceDistribution:
    def test_full_run_in_one_call(self, deployment, executor, contributors):
        engine, token = deployment.engine, deployment.token
        result = advance(executor, engine, 1, LARGE_GAS)

        assert result.finished
        assert result.units == 6
        assert engine.progress.phase is DistributionPhase.CLOSED
        assert engine.progress.distribution_start == START
        assert token.transfers_enabled
        assert [r.kind for r in engine.records] == [
            RecordKind.RESERVE_ENTITY,
            RecordKind.SHAREHOLDER,
            RecordKind.SHAREHOLDER,
            RecordKind.CONTRIBUTOR,
            RecordKind.CONTRIBUTOR,
            RecordKind.CONTRIBUTOR,
        ]
        assert engine.contributors == contributors
        assert engine.reserve_entity == RESERVE

    def test_escrows_funded(self, distributed):
        engine, token = distributed.engine, distributed.token
        reserve_escrow = engine.escrow_of(0)
        assert reserve_escrow.beneficiary == RESERVE
        assert reserve_escrow.start == START
        assert token.balance_of(reserve_escrow.address) == 5000
        assert engine.escrow_of(1).beneficiary == SHAREHOLDER
        assert engine.escrow_of(2).beneficiary is None
        assert token.balance_of(engine.escrow_of(2).address) == 800

    def test_escrow_lookup_errors(self, distributed):
        with pytest.raises(NotFoundError):
            distributed.engine.escrow_of(3)
        with pytest.raises(NotFoundError):
            distributed.engine.escrow_of(99)

    def test_contributors_paid_directly(self, distributed, contributors):
        token = distributed.token
        assert [token.balance_of(c) for c in contributors] == [100, 200, 300]

    def test_engine_keeps_bonus_reserve(self, distributed):
        # 30% of the 600 contributed
        assert distributed.token.balance_of(distributed.engine.address) == 180

    def test_chunked_contributor_phase(self):
        deployment = make_deployment([100, 200, 300])
        engine = deployment.engine
        executor = AtomicExecutor(deployment)

        first = advance(executor, engine, ESCROW_UNIT_GAS, ESCROW_UNIT_GAS)
        assert first.units == 1 and not first.finished
        assert engine.progress.phase is DistributionPhase.RESERVE_DONE

        budget = dict(min_budget=PAYMENT_UNIT_GAS, gas=2 * PAYMENT_UNIT_GAS)
        second = advance(executor, engine, **budget)
        assert second.units == 2 and not second.finished
        assert engine.progress.phase is DistributionPhase.CONTRIBUTORS_IN_PROGRESS

        third = advance(executor, engine, **budget)
        assert third.units == 1 and third.finished

        contributor_records = [r for r in engine.records if r.kind is RecordKind.CONTRIBUTOR]
        assert [r.amount for r in contributor_records] == [100, 200, 300]
        assert len({r.beneficiary for r in contributor_records}) == 3

    def test_close_can_take_its_own_call(self):
        deployment = make_deployment([100])
        engine = deployment.engine
        executor = AtomicExecutor(deployment)
        advance(executor, engine, ESCROW_UNIT_GAS, ESCROW_UNIT_GAS)
        result = advance(executor, engine, PAYMENT_UNIT_GAS, PAYMENT_UNIT_GAS)
        assert result.units == 1 and not result.finished

        result = advance(executor, engine, FINALIZE_GAS, FINALIZE_GAS)
        assert result.units == 0 and result.finished
        assert engine.progress.closed

    def test_no_progress(self, deployment, executor):
        with pytest.raises(NoProgressError):
            advance(executor, deployment.engine, PAYMENT_UNIT_GAS, PAYMENT_UNIT_GAS - 1)
        assert deployment.engine.progress.phase is DistributionPhase.NOT_STARTED

    def test_out_of_gas_rolls_back(self, deployment, executor):
        before = deployment.state_dict()
        with pytest.raises(OutOfGasError):
            advance(executor, deployment.engine, 1, ESCROW_UNIT_GAS + 10)
        assert deployment.state_dict() == before

    def test_non_positive_budget(self, deployment, executor):
        with pytest.raises(ValueError):
            advance(executor, deployment.engine, 0, LARGE_GAS)

    def test_closed_distribution(self, distributed, executor):
        with pytest.raises(DistributionClosedError):
            advance(executor, distributed.engine, 1, LARGE_GAS)

    def test_grace_period_from_first_allocation(self, deployment, executor):
        advance(executor, deployment.engine, ESCROW_UNIT_GAS, ESCROW_UNIT_GAS, at=T0 + 123)
        assert deployment.engine.progress.distribution_start == T0 + 123 + 7 * DAY
        assert deployment.ledger.distribution_start == T0 + 123 + 7 * DAY

    def test_status(self, distributed):
        status = distributed.engine.status()
        assert status["progress"]["phase"] == "closed"
        assert status["contributors"] == {"done": 3, "total": 3}
        assert status["next_bonus_deadline"] == START + 90 * DAY
        assert status["transfers_enabled"] is True


class TestBindShareholder:
    def test_binds_first_matching_record(self, distributed, executor):
        engine = distributed.engine
        index = executor.call(
            engine.bind_shareholder_beneficiary, 800, NEW_SHAREHOLDER, caller=ADMIN, timestamp=START
        )
        assert index == 2
        assert engine.records[2].beneficiary == NEW_SHAREHOLDER
        assert engine.escrow_of(2).beneficiary == NEW_SHAREHOLDER

    def test_assigned_records_do_not_match(self, distributed, executor):
        with pytest.raises(NoMatchingShareholderError):
            executor.call(
                distributed.engine.bind_shareholder_beneficiary, 1200, NEW_SHAREHOLDER,
                caller=ADMIN, timestamp=START,
            )

    def test_no_matching_amount(self, distributed, executor):
        with pytest.raises(NoMatchingShareholderError):
            executor.call(
                distributed.engine.bind_shareholder_beneficiary, 801, NEW_SHAREHOLDER,
                caller=ADMIN, timestamp=START,
            )

    def test_owner_only(self, distributed, executor):
        with pytest.raises(UnauthorizedError):
            executor.call(
                distributed.engine.bind_shareholder_beneficiary, 800, NEW_SHAREHOLDER,
                caller=OUTSIDER, timestamp=START,
            )

    def test_after_deadline(self, distributed, executor):
        with pytest.raises(InvalidStateError):
            executor.call(
                distributed.engine.bind_shareholder_beneficiary, 800, NEW_SHAREHOLDER,
                caller=ADMIN, timestamp=RECOVERY_DEADLINE,
            )
        assert distributed.engine.records[2].beneficiary is None


class TestRecoverUnassignedShareholders:
    def recover(self, executor, engine, at=RECOVERY_DEADLINE, min_budget=1, gas=LARGE_GAS):
        return executor.call(
            engine.recover_unassigned_shareholders, min_budget, caller=OUTSIDER, timestamp=at, gas_limit=gas
        )

    def test_requires_closed_distribution(self, deployment, executor):
        with pytest.raises(InvalidStateError):
            self.recover(executor, deployment.engine)

    def test_recovers_to_engine(self, distributed, executor):
        engine = distributed.engine
        result = self.recover(executor, engine)
        assert result.finished
        assert result.units == len(engine.records)
        assert engine.records[2].beneficiary == engine.address
        assert engine.escrow_of(2).beneficiary == engine.address
        assert engine.records[1].beneficiary == SHAREHOLDER

    def test_before_deadline_aborts(self, distributed, executor):
        with pytest.raises(InvalidStateError):
            self.recover(executor, distributed.engine, at=RECOVERY_DEADLINE - 1)
        assert distributed.engine.progress.shareholder_recovery_index == 0

    def test_nothing_left(self, distributed, executor):
        self.recover(executor, distributed.engine)
        with pytest.raises(NothingToRecoverError):
            self.recover(executor, distributed.engine)

    def test_resumable(self, distributed, executor):
        engine = distributed.engine
        budget = dict(min_budget=RECORD_SCAN_GAS + RECOVER_UNIT_GAS, gas=RECORD_SCAN_GAS + RECOVER_UNIT_GAS)
        calls = 0
        while True:
            result = self.recover(executor, engine, **budget)
            calls += 1
            if result.finished:
                break
        assert calls == len(engine.records)
        assert engine.records[2].beneficiary == engine.address

    def test_no_progress(self, distributed, executor):
        with pytest.raises(NoProgressError):
            self.recover(executor, distributed.engine, min_budget=RECORD_SCAN_GAS, gas=RECORD_SCAN_GAS - 1)

    def test_recovered_escrow_releases_to_engine(self, distributed, executor):
        engine = distributed.engine
        self.recover(executor, engine)
        escrow = engine.escrow_of(2)
        released = executor.call(escrow.release, caller=OUTSIDER, timestamp=escrow.end)
        assert released == 800
        assert distributed.token.balance_of(engine.address) == 180 + 800
