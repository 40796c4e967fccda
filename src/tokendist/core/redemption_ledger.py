"""
Redemption Ledger

Per-holder contributor state and the operations that re-point a
contributor's allocation to a new address:

- self-redeem: the contributor confirms the address they already control
- signed redeem: an off-chain signature over the destination string
  (Bitcoin- or Ethereum-style framing) moves balance and tracked minimum
- contingent redeem: the owner picks the destination, authorized by the
  contributor's signature over the fixed ``DELEGATION`` token
- force redirect: the manager's delegate path used by unused-fund recovery

Redirects are single hop. A destination becomes a used identity, so it can
never be redeemed away again or receive a second redirect.

The ledger is also the token's source of truth for redirects and receives
a balance report after every debit while the token's manager relationship
is active, keeping ``minimum_retained_balance`` at the lowest balance seen.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from tokendist.core.access import Ownable, require_caller
from tokendist.core.address_link import AddressLinkProtocol, ChainKind, SignatureParts
from tokendist.core.addresses import normalize_address, parse_ascii_address
from tokendist.core.constants import REDEMPTION_WINDOW
from tokendist.core.exceptions import (
    AlreadyDoneError,
    AlreadyRedeemedError,
    DestinationInUseError,
    InvalidProofError,
    NotContributorError,
    RedemptionWindowClosedError,
)

if TYPE_CHECKING:
    from tokendist.core.contracts.token import DistributionToken
    from tokendist.core.runtime import CallContext

logger = logging.getLogger(__name__)


@dataclass
class HolderState:
    """Redemption state of one address."""

    is_initial_contributor: bool = False
    is_redeemed: bool = False
    is_original_or_redeemed_contributor: bool = False
    redirect_to: str | None = None
    minimum_retained_balance: int = 0


class RedemptionLedger:
    """
    Holder flags, the redirect map and minimum-balance tracking.

    Args:
        address: Contract address of the ledger (authorized on the token)
        token: Token whose balances are moved on redemption
        owner: Administrative owner, authorizes contingent redemption
        manager: Distribution engine address, drives registration and recovery
        protocol: Signature verification capability
        redemption_window: Seconds the window stays open after distribution start
    """

    def __init__(
        self,
        address: str,
        token: "DistributionToken",
        owner: Ownable,
        manager: str,
        protocol: AddressLinkProtocol | None = None,
        redemption_window: int = REDEMPTION_WINDOW,
    ):
        self.address = normalize_address(address)
        self.token = token
        self.owner = owner
        self.manager = normalize_address(manager)
        self.protocol = protocol or AddressLinkProtocol()
        self.redemption_window = redemption_window

        self.holders: dict[str, HolderState] = {}
        self.distribution_start: int | None = None

    # ==================== Views ====================

    def holder(self, address: str) -> HolderState:
        """Copy of the holder state; unknown addresses get the empty state."""
        state = self.holders.get(address.lower())
        return HolderState(**asdict(state)) if state else HolderState()

    def redirect_target(self, address: str) -> str | None:
        state = self.holders.get(address.lower())
        return state.redirect_to if state else None

    def resolve(self, address: str) -> str:
        """Return the direct redirect target of ``address``, or the address itself."""
        return self.redirect_target(address) or address.lower()

    def is_redirected(self, address: str) -> bool:
        return self.redirect_target(address) is not None

    def is_redeemed(self, address: str) -> bool:
        state = self.holders.get(address.lower())
        return bool(state and state.is_redeemed)

    def minimum_retained_balance(self, address: str) -> int:
        state = self.holders.get(address.lower())
        return state.minimum_retained_balance if state else 0

    def is_window_open(self, now: int) -> bool:
        if self.distribution_start is None:
            return False
        return self.distribution_start <= now <= self.distribution_start + self.redemption_window

    @property
    def window_end(self) -> int | None:
        if self.distribution_start is None:
            return None
        return self.distribution_start + self.redemption_window

    # ==================== Hooks ====================

    def open_redemption_window(self, ctx: "CallContext", start: int) -> None:
        """Fix the distribution start (manager only, once)."""
        require_caller(ctx.caller, self.manager, "distribution manager")
        if self.distribution_start is not None:
            raise AlreadyDoneError(
                "Distribution start already fixed",
                details={"distribution_start": self.distribution_start},
            )
        self.distribution_start = start
        logger.info(
            "Redemption window fixed",
            extra={"event": "ledger.window_opened", "start": start, "end": self.window_end},
        )

    def register_contributor(self, ctx: "CallContext", address: str, amount: int) -> None:
        """Record a paid contributor as an original identity holding ``amount``."""
        require_caller(ctx.caller, self.manager, "distribution manager")
        state = self._state(address)
        state.is_initial_contributor = True
        state.is_original_or_redeemed_contributor = True
        state.minimum_retained_balance += amount

    def observe_balance(self, address: str, balance: int) -> None:
        """Lower the tracked minimum when a holder's balance drops below it."""
        state = self.holders.get(address.lower())
        if state is not None and balance < state.minimum_retained_balance:
            state.minimum_retained_balance = balance

    # ==================== Redemption ====================

    def redeem_self(self, ctx: "CallContext") -> None:
        """
        Confirm the caller's own address.

        Marks the caller redeemed. No redirect is recorded and no funds move.
        """
        self._require_window(ctx.timestamp)
        state = self._require_redeemable(ctx.caller)
        state.is_redeemed = True
        logger.info(
            "Contributor self-redeemed",
            extra={"event": "ledger.redeem_self", "source": ctx.caller},
        )

    def redeem_signed(
        self,
        ctx: "CallContext",
        source: str,
        chain_kind: ChainKind | int,
        destination_text: str | bytes,
        signature: SignatureParts,
    ) -> str:
        """
        Redeem ``source`` to the destination it signed.

        Args:
            ctx: Call context (any caller may submit the proof)
            source: Original contributor address, the claimed signer
            chain_kind: Message framing of the signature
            destination_text: ASCII destination, 40 or 42 hex characters
            signature: Recovery parameters over the framed destination

        Returns:
            Normalized destination address

        Raises:
            RedemptionWindowClosedError: Outside the redemption window
            NotContributorError: Source is not an original contributor
            AlreadyRedeemedError: Source was redeemed before
            MalformedAddressError: Destination string does not parse
            DestinationInUseError: Destination is already a contributor identity
            InvalidProofError: Recovered signer does not match ``source``
        """
        self._require_window(ctx.timestamp)
        self._require_redeemable(source)
        destination = parse_ascii_address(destination_text)
        self._require_unused(destination)
        if not self.protocol.verify_linked_address(source, chain_kind, destination_text, signature):
            raise InvalidProofError(
                "Signature does not prove control of the source address",
                details={"source": source.lower(), "chain_kind": int(chain_kind)},
            )
        self._redirect(source, destination, reason="signed")
        return destination

    def redeem_contingent(
        self,
        ctx: "CallContext",
        source: str,
        chain_kind: ChainKind | int,
        destination: str,
        signature: SignatureParts,
    ) -> str:
        """Redeem ``source`` to an owner-chosen destination under a delegation proof."""
        self.owner.require_owner(ctx.caller)
        self._require_window(ctx.timestamp)
        self._require_redeemable(source)
        destination_norm = parse_ascii_address(destination)
        self._require_unused(destination_norm)
        if not self.protocol.verify_delegation_proof(source, chain_kind, signature):
            raise InvalidProofError(
                "Delegation proof does not match the source address",
                details={"source": source.lower(), "chain_kind": int(chain_kind)},
            )
        self._redirect(source, destination_norm, reason="contingent")
        return destination_norm

    def force_redirect(self, ctx: "CallContext", source: str, destination: str) -> None:
        """Redirect a never-redeemed contributor (manager only, no window or proof)."""
        require_caller(ctx.caller, self.manager, "distribution manager")
        self._require_redeemable(source)
        self._redirect(source, normalize_address(destination), reason="forced")

    # ==================== Internal ====================

    def _state(self, address: str) -> HolderState:
        key = address.lower()
        state = self.holders.get(key)
        if state is None:
            state = self.holders[key] = HolderState()
        return state

    def _require_window(self, now: int) -> None:
        if not self.is_window_open(now):
            raise RedemptionWindowClosedError(
                "Redemption window is closed",
                details={"now": now, "start": self.distribution_start, "end": self.window_end},
                recoverable=self.distribution_start is None or now < self.distribution_start,
            )

    def _require_redeemable(self, source: str) -> HolderState:
        state = self.holders.get(source.lower())
        if state is None or not state.is_initial_contributor:
            raise NotContributorError(
                f"{source} is not an original contributor",
                details={"source": source.lower()},
            )
        if state.is_redeemed:
            raise AlreadyRedeemedError(
                f"{source} was already redeemed",
                details={"source": source.lower(), "redirect_to": state.redirect_to},
            )
        return state

    def _require_unused(self, destination: str) -> None:
        state = self.holders.get(destination)
        if state is not None and state.is_original_or_redeemed_contributor:
            raise DestinationInUseError(
                f"{destination} is already a contributor identity",
                details={"destination": destination},
            )

    def _redirect(self, source: str, destination: str, reason: str) -> None:
        source_state = self._state(source)
        carried_minimum = source_state.minimum_retained_balance
        moved = self.token.transfer_all_balance(self.address, source, destination)

        destination_state = self._state(destination)
        destination_state.minimum_retained_balance += carried_minimum
        destination_state.is_original_or_redeemed_contributor = True
        source_state.minimum_retained_balance = 0
        source_state.redirect_to = destination
        source_state.is_redeemed = True

        logger.info(
            "Contributor redirected",
            extra={
                "event": "ledger.redirect",
                "reason": reason,
                "source": source.lower(),
                "destination": destination,
                "amount": moved,
                "minimum": carried_minimum,
            },
        )

    # ==================== Serialization ====================

    def state_dict(self) -> dict[str, Any]:
        return {
            "distribution_start": self.distribution_start,
            "holders": {address: asdict(state) for address, state in self.holders.items()},
        }

    def load_state_dict(self, data: dict[str, Any]) -> None:
        self.distribution_start = data.get("distribution_start")
        self.holders = {
            address: HolderState(**state) for address, state in data.get("holders", {}).items()
        }
