"""Contract-style components owned by a deployment: the token ledger and vesting escrows."""

from tokendist.core.contracts.token import DistributionToken, TokenEvent
from tokendist.core.contracts.vesting import VestingAccount, VestingRegistry

__all__ = ["DistributionToken", "TokenEvent", "VestingAccount", "VestingRegistry"]
