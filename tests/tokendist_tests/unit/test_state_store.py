"""
Tests for checkpoint persistence and deployment restore.
"""

import json

import pytest

from conftest import OUTSIDER, START
from tokendist.core.address_link import ChainKind, sign_link_message
from tokendist.core.deployment import Deployment
from tokendist.core.exceptions import CorruptedStateError
from tokendist.core.runtime import AtomicExecutor
from tokendist.core.state_store import FORMAT_VERSION, StateStore, state_digest


@pytest.fixture
def store(tmp_path):
    return StateStore(tmp_path / "checkpoints" / "state.json")


class TestStateStore:
    def test_round_trip(self, store, distributed):
        state = distributed.state_dict()
        digest = store.save(state)
        assert store.exists()
        assert digest == state_digest(state)
        assert store.load() == state

    def test_no_temp_file_left(self, store, deployment):
        store.save(deployment.state_dict())
        assert [p.name for p in store.path.parent.iterdir()] == ["state.json"]

    def test_missing_file(self, store):
        assert not store.exists()
        with pytest.raises(FileNotFoundError):
            store.load()

    def test_invalid_json(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("{not json", encoding="utf-8")
        with pytest.raises(CorruptedStateError):
            store.load()

    def test_tampered_state(self, store, deployment):
        store.save(deployment.state_dict())
        payload = json.loads(store.path.read_text(encoding="utf-8"))
        payload["state"]["admin"] = OUTSIDER
        store.path.write_text(json.dumps(payload), encoding="utf-8")
        with pytest.raises(CorruptedStateError):
            store.load()

    def test_unknown_version(self, store, deployment):
        store.save(deployment.state_dict())
        payload = json.loads(store.path.read_text(encoding="utf-8"))
        payload["version"] = FORMAT_VERSION + 1
        store.path.write_text(json.dumps(payload), encoding="utf-8")
        with pytest.raises(CorruptedStateError):
            store.load()

    def test_missing_digest(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text(json.dumps({"version": FORMAT_VERSION, "state": {}}), encoding="utf-8")
        with pytest.raises(CorruptedStateError):
            store.load()

    def test_digest_is_key_order_independent(self):
        assert state_digest({"a": 1, "b": [1, 2]}) == state_digest({"b": [1, 2], "a": 1})


class TestDeploymentRestore:
    def test_fresh_deployment(self, deployment):
        restored = Deployment.from_state(deployment.state_dict())
        assert restored.state_dict() == deployment.state_dict()
        assert restored.engine.address == deployment.engine.address

    def test_after_redemption(self, store, distributed, executor, contributors, contributor_keys):
        destination = "0x" + "dd" * 20
        signature = sign_link_message(contributor_keys[0], ChainKind.BITCOIN, destination)
        executor.call(
            distributed.ledger.redeem_signed, contributors[0], ChainKind.BITCOIN, destination, signature,
            caller=OUTSIDER, timestamp=START,
        )
        store.save(distributed.state_dict())

        restored = Deployment.from_state(store.load())
        assert restored.state_dict() == distributed.state_dict()
        assert restored.ledger.resolve(contributors[0]) == destination
        assert restored.token.holders is restored.ledger
        assert restored.engine.progress.closed

    def test_restored_deployment_keeps_running(self, store, deployment):
        executor = AtomicExecutor(deployment, store=store)
        executor.call(deployment.engine.advance_distribution, 250_000, caller=OUTSIDER,
                      timestamp=START, gas_limit=250_000)

        restored = Deployment.from_state(store.load())
        result = AtomicExecutor(restored, store=store).call(
            restored.engine.advance_distribution, 1, caller=OUTSIDER, timestamp=START, gas_limit=50_000_000
        )
        assert result.finished
        assert restored.engine.progress.distribution_start == deployment.engine.progress.distribution_start

    def test_ownership_change_keeps_addresses(self, deployment):
        deployment.owner.owner = OUTSIDER
        restored = Deployment.from_state(deployment.state_dict())
        assert restored.owner.owner == OUTSIDER
        assert restored.token.address == deployment.token.address

    @pytest.mark.parametrize("missing", ["config", "allocations", "token"])
    def test_incomplete_checkpoint(self, deployment, missing):
        state = deployment.state_dict()
        del state[missing]
        with pytest.raises(CorruptedStateError):
            Deployment.from_state(state)

    def test_invalid_config_in_checkpoint(self, deployment):
        state = deployment.state_dict()
        state["config"]["redemption_window"] = 0
        with pytest.raises(CorruptedStateError):
            Deployment.from_state(state)
