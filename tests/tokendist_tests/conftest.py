"""
Shared fixtures for tokendist tests.

Addresses and keys are deterministic so failures are reproducible: the
contributors are controlled by private keys 0x...0b, 0x...0c and 0x...0d.
"""

import sys
from pathlib import Path

import pytest

project_root = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(project_root / "src"))

from tokendist.core.address_link import address_from_private_key  # noqa: E402
from tokendist.core.allocation_source import StaticAllocationSource  # noqa: E402
from tokendist.core.config import DistributionConfig  # noqa: E402
from tokendist.core.constants import DAY  # noqa: E402
from tokendist.core.deployment import Deployment  # noqa: E402
from tokendist.core.runtime import AtomicExecutor  # noqa: E402

T0 = 1_700_000_000
GRACE = 7 * DAY
START = T0 + GRACE
LARGE_GAS = 50_000_000

ADMIN = "0x" + "ad" * 20
RESERVE = "0x" + "11" * 20
SHAREHOLDER = "0x" + "22" * 20
OUTSIDER = "0x" + "99" * 20


def private_key(n: int) -> str:
    return f"{n:064x}"


CONTRIBUTOR_KEYS = [private_key(n) for n in (11, 12, 13)]
CONTRIBUTOR_AMOUNTS = [100, 200, 300]


@pytest.fixture
def contributor_keys():
    return list(CONTRIBUTOR_KEYS)


@pytest.fixture
def contributors():
    return [address_from_private_key(key) for key in CONTRIBUTOR_KEYS]


@pytest.fixture
def config():
    return DistributionConfig().validate()


@pytest.fixture
def allocations(contributors):
    return StaticAllocationSource(
        reserve_entity=(RESERVE, 5000),
        shareholders=[(SHAREHOLDER, 1200), (None, 800)],
        contributors=list(zip(contributors, CONTRIBUTOR_AMOUNTS)),
    )


@pytest.fixture
def deployment(config, allocations):
    return Deployment.genesis(config, allocations, ADMIN)


@pytest.fixture
def executor(deployment):
    return AtomicExecutor(deployment, time_provider=lambda: T0)


@pytest.fixture
def distributed(deployment, executor):
    """Deployment whose distribution ran to completion at T0."""
    result = executor.call(
        deployment.engine.advance_distribution,
        1,
        caller=OUTSIDER,
        timestamp=T0,
        gas_limit=LARGE_GAS,
    )
    assert result.finished
    return deployment


def make_deployment(contributor_amounts, config=None, reserve_amount=5000):
    """Deployment with plain contributor addresses and no shareholders."""
    source = StaticAllocationSource(
        reserve_entity=(RESERVE, reserve_amount),
        contributors=[("0x%040x" % (1000 + i), amount) for i, amount in enumerate(contributor_amounts)],
    )
    return Deployment.genesis(config or DistributionConfig(), source, ADMIN)
