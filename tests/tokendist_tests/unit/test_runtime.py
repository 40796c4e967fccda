"""
Tests for gas metering and all-or-nothing execution.
"""

import pytest

from conftest import OUTSIDER, T0
from tokendist.core.exceptions import OutOfGasError, UnauthorizedError
from tokendist.core.runtime import AtomicExecutor, BatchResult, CallContext, GasMeter, require_positive_budget
from tokendist.core.state_store import StateStore


class TestGasMeter:
    def test_consume_and_remaining(self):
        meter = GasMeter(100)
        meter.consume(30, "first")
        assert meter.gas_used == 30
        assert meter.remaining == 70
        assert meter.has_budget(70)
        assert not meter.has_budget(71)

    def test_exceeding_limit(self):
        meter = GasMeter(10)
        with pytest.raises(OutOfGasError) as exc_info:
            meter.consume(11, "unit")
        assert exc_info.value.details["cost"] == 11
        assert meter.gas_used == 0

    def test_negative_limit(self):
        with pytest.raises(ValueError):
            GasMeter(-1)


class TestCallContext:
    def test_caller_normalized(self):
        ctx = CallContext("0x" + "AB" * 20, T0)
        assert ctx.caller == "0x" + "ab" * 20

    def test_forward_shares_meter(self):
        ctx = CallContext(OUTSIDER, T0, GasMeter(100))
        nested = ctx.forward("0x" + "01" * 20)
        nested.gas.consume(40)
        assert ctx.gas.remaining == 60
        assert nested.timestamp == T0


class TestBudgetHelpers:
    @pytest.mark.parametrize("value", [0, -5, 1.5, "10"])
    def test_rejects_non_positive(self, value):
        with pytest.raises(ValueError):
            require_positive_budget(value)

    def test_batch_result_dict(self):
        assert BatchResult(units=2, finished=False).to_dict() == {"units": 2, "finished": False}


class TestAtomicExecutor:
    def test_failed_call_restores_state(self, deployment, executor):
        token = deployment.token
        before = deployment.state_dict()

        def partial_then_fail(ctx):
            token.transfer(deployment.engine.address, OUTSIDER, 10)
            raise UnauthorizedError("late failure")

        with pytest.raises(UnauthorizedError):
            executor.call(partial_then_fail, caller=OUTSIDER)
        assert token.balance_of(OUTSIDER) == 0
        assert deployment.state_dict() == before

    def test_default_timestamp_from_time_provider(self, deployment, executor):
        seen = []
        executor.call(lambda ctx: seen.append(ctx.timestamp), caller=OUTSIDER)
        assert seen == [T0]

    def test_default_gas_limit(self, deployment):
        executor = AtomicExecutor(deployment, default_gas_limit=123, time_provider=lambda: T0)
        limits = []
        executor.call(lambda ctx: limits.append(ctx.gas.gas_limit), caller=OUTSIDER)
        assert limits == [123]

    def test_commit_saves_checkpoint(self, deployment, tmp_path):
        store = StateStore(tmp_path / "state.json")
        executor = AtomicExecutor(deployment, store=store, time_provider=lambda: T0)
        executor.call(deployment.engine.advance_distribution, 1, caller=OUTSIDER, gas_limit=50_000_000)
        assert store.load() == deployment.state_dict()

    def test_rollback_leaves_checkpoint(self, deployment, tmp_path):
        store = StateStore(tmp_path / "state.json")
        executor = AtomicExecutor(deployment, store=store, time_provider=lambda: T0)
        with pytest.raises(OutOfGasError):
            executor.call(deployment.engine.advance_distribution, 1, caller=OUTSIDER, gas_limit=300_000)
        assert not store.exists()
