"""
Genesis wiring of a distribution deployment.

A deployment owns one token, one redemption ledger, one vesting registry
and one distribution engine, all at deterministic addresses derived from
the administrator address. ``state_dict``/``load_state_dict`` round-trip
every mutable component; the atomic executor snapshots through them.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

from tokendist.core.access import Ownable
from tokendist.core.address_link import AddressLinkProtocol
from tokendist.core.addresses import contract_address, normalize_address
from tokendist.core.allocation_source import StaticAllocationSource, required_supply
from tokendist.core.config import ConfigurationError, DistributionConfig
from tokendist.core.constants import ENGINE_ADDRESS_LABEL, LEDGER_ADDRESS_LABEL, TOKEN_ADDRESS_LABEL
from tokendist.core.contracts.token import DistributionToken
from tokendist.core.contracts.vesting import VestingRegistry
from tokendist.core.distribution_engine import DistributionEngine
from tokendist.core.exceptions import CorruptedStateError
from tokendist.core.redemption_ledger import RedemptionLedger

logger = logging.getLogger(__name__)


class Deployment:
    def __init__(
        self,
        config: DistributionConfig,
        source: StaticAllocationSource,
        owner: Ownable,
        token: DistributionToken,
        ledger: RedemptionLedger,
        vesting: VestingRegistry,
        engine: DistributionEngine,
    ):
        self.config = config
        self.source = source
        self.owner = owner
        self.token = token
        self.ledger = ledger
        self.vesting = vesting
        self.engine = engine
        self.genesis_admin = owner.owner

    @classmethod
    def genesis(
        cls,
        config: DistributionConfig,
        source: StaticAllocationSource,
        admin: str,
        protocol: AddressLinkProtocol | None = None,
    ) -> "Deployment":
        """
        Create every component and mint the supply to the engine.

        Raises:
            ConfigurationError: If a fixed supply cannot cover allocations and bonuses
        """
        admin = normalize_address(admin)
        needed = required_supply(source)
        total_supply = config.total_supply if config.total_supply is not None else needed
        if total_supply < needed:
            raise ConfigurationError(
                f"total_supply {total_supply} cannot cover allocations and bonuses ({needed})"
            )

        token_address = contract_address(TOKEN_ADDRESS_LABEL, admin)
        engine_address = contract_address(ENGINE_ADDRESS_LABEL, token_address)
        ledger_address = contract_address(LEDGER_ADDRESS_LABEL, token_address)

        owner = Ownable(admin)
        token = DistributionToken(
            name=config.token_name,
            symbol=config.token_symbol,
            address=token_address,
            manager=engine_address,
            total_supply=total_supply,
            decimals=config.decimals,
            ledger_address=ledger_address,
        )
        ledger = RedemptionLedger(
            address=ledger_address,
            token=token,
            owner=owner,
            manager=engine_address,
            protocol=protocol,
            redemption_window=config.redemption_window,
        )
        token.holders = ledger
        vesting = VestingRegistry(token)
        engine = DistributionEngine(
            address=engine_address,
            token=token,
            ledger=ledger,
            vesting=vesting,
            source=source,
            owner=owner,
            config=config,
        )
        logger.info(
            "Deployment created",
            extra={
                "event": "deployment.genesis",
                "token": token_address,
                "engine": engine_address,
                "ledger": ledger_address,
                "total_supply": total_supply,
            },
        )
        return cls(config, source, owner, token, ledger, vesting, engine)

    def state_dict(self) -> dict[str, Any]:
        return copy.deepcopy(
            {
                "admin": self.owner.owner,
                "genesis_admin": self.genesis_admin,
                "config": self.config.to_dict(),
                "allocations": self.source.to_dict(),
                "token": self.token.state_dict(),
                "ledger": self.ledger.state_dict(),
                "vesting": self.vesting.state_dict(),
                "engine": self.engine.state_dict(),
            }
        )

    def load_state_dict(self, data: dict[str, Any]) -> None:
        data = copy.deepcopy(data)
        self.owner.owner = normalize_address(data["admin"])
        self.token.load_state_dict(data["token"])
        self.ledger.load_state_dict(data["ledger"])
        self.vesting.load_state_dict(data["vesting"])
        self.engine.load_state_dict(data["engine"])

    @classmethod
    def from_state(cls, data: dict[str, Any]) -> "Deployment":
        """Rebuild a deployment from a checkpoint written by ``state_dict``."""
        try:
            config = DistributionConfig.from_dict(data["config"]).validate()
            source = StaticAllocationSource(**data["allocations"])
            deployment = cls.genesis(config, source, data.get("genesis_admin", data["admin"]))
            deployment.load_state_dict(data)
        except (KeyError, TypeError, ValueError, ConfigurationError) as exc:
            raise CorruptedStateError(f"Checkpoint cannot be restored: {exc}") from exc
        return deployment

