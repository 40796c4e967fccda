"""
Redirect-aware fixed-supply token ledger.

ERC20-style balances, allowances and transfer events, extended with the
hooks the distribution needs:
- a transferability gate that stays shut until the distribution closes
  (only the manager and whitelisted escrow senders may move funds before)
- a redirect guard fed by the redemption ledger: ordinary transfers into a
  superseded address are rejected, manager transfers follow the redirect
- a one-way manager relationship that authorizes ``transfer_all_balance``
  and reports every debit to the redemption ledger for minimum-balance
  tracking

The whole supply is minted once, at genesis, to the distribution engine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from tokendist.core.access import require_caller
from tokendist.core.addresses import normalize_address
from tokendist.core.constants import ZERO_ADDRESS
from tokendist.core.exceptions import (
    InsufficientAllowanceError,
    InsufficientBalanceError,
    InvalidStateError,
    RedirectedRecipientError,
    TokenError,
    TransfersLockedError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

UINT256_MAX = 2**256 - 1


class HolderRegistry(Protocol):
    """Narrow read/notify view of the redemption ledger used by the token."""

    def resolve(self, address: str) -> str: ...

    def is_redirected(self, address: str) -> bool: ...

    def observe_balance(self, address: str, balance: int) -> None: ...


@dataclass
class TokenEvent:
    """Represents a Transfer or Approval event."""

    event_type: str
    from_address: str
    to_address: str
    value: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "from_address": self.from_address,
            "to_address": self.to_address,
            "value": self.value,
        }


@dataclass
class DistributionToken:
    """
    Fixed-supply token with a redirect guard and a manager relationship.

    All balances and allowances are stored in-memory and round-trip through
    ``state_dict``/``load_state_dict`` for checkpoints and rollback.
    """

    name: str
    symbol: str
    address: str
    manager: str
    total_supply: int
    decimals: int = 18

    holders: HolderRegistry | None = field(default=None, repr=False)

    # Address of the redemption ledger, allowed to call transfer_all_balance
    ledger_address: str = ""

    # State
    balances: dict[str, int] = field(default_factory=dict)
    allowances: dict[str, dict[str, int]] = field(default_factory=dict)
    events: list[TokenEvent] = field(default_factory=list)
    transfers_enabled: bool = False
    manager_enabled: bool = True
    trusted_senders: set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        self.address = normalize_address(self.address)
        self.manager = normalize_address(self.manager)
        if self.ledger_address:
            self.ledger_address = normalize_address(self.ledger_address)
        self._validate_amount(self.total_supply)
        if not self.balances:
            self.balances[self.manager] = self.total_supply
            self._emit_transfer(ZERO_ADDRESS, self.manager, self.total_supply)

    # ==================== View Functions ====================

    def balance_of(self, account: str) -> int:
        return self.balances.get(self._normalize(account), 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get(self._normalize(owner), {}).get(self._normalize(spender), 0)

    def is_manager(self, caller: str) -> bool:
        return self.manager_enabled and self._normalize(caller) == self.manager

    # ==================== State-Changing Functions ====================

    def transfer(self, sender: str, recipient: str, amount: int) -> str:
        """
        Transfer tokens from sender to recipient.

        Manager transfers are delivered to the recipient's redirect target;
        other senders may not send into a redirected address.

        Returns:
            The address that was actually credited

        Raises:
            TransfersLockedError: Before the distribution closes, for untrusted senders
            RedirectedRecipientError: When the recipient was superseded by a redemption
            InsufficientBalanceError: If sender balance is too low
        """
        sender_norm = self._normalize(sender)
        recipient_norm = self._route(sender_norm, self._normalize(recipient))
        self._require_can_send(sender_norm)
        self._move(sender_norm, recipient_norm, amount)
        return recipient_norm

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        owner_norm = self._normalize(owner)
        spender_norm = self._normalize(spender)
        self._validate_address(spender_norm, "spender")
        self._validate_amount(amount)

        self.allowances.setdefault(owner_norm, {})[spender_norm] = amount
        self.events.append(TokenEvent("Approval", owner_norm, spender_norm, amount))
        return True

    def transfer_from(self, spender: str, from_addr: str, to_addr: str, amount: int) -> str:
        """Transfer tokens using an allowance."""
        spender_norm = self._normalize(spender)
        from_norm = self._normalize(from_addr)
        to_norm = self._route(spender_norm, self._normalize(to_addr))
        self._require_can_send(from_norm)
        self._validate_amount(amount)

        current_allowance = self.allowance(from_norm, spender_norm)
        if current_allowance < amount:
            raise InsufficientAllowanceError(
                f"Insufficient allowance ({current_allowance} < {amount})",
                details={"owner": from_norm, "spender": spender_norm},
            )
        self._move(from_norm, to_norm, amount)
        if current_allowance != UINT256_MAX:
            self.allowances[from_norm][spender_norm] = current_allowance - amount
        return to_norm

    def transfer_all_balance(self, caller: str, source: str, destination: str) -> int:
        """
        Move the entire balance of ``source`` to ``destination``.

        Only the manager or the redemption ledger may call this, and only
        while the manager relationship is active.

        Returns:
            Amount moved
        """
        caller_norm = self._normalize(caller)
        if not self.manager_enabled:
            raise UnauthorizedError("Manager relationship has been disabled")
        if caller_norm not in (self.manager, self.ledger_address):
            raise UnauthorizedError(
                "Only the manager or redemption ledger may move whole balances",
                details={"caller": caller_norm},
            )
        source_norm = self._normalize(source)
        destination_norm = self._normalize(destination)
        amount = self.balances.get(source_norm, 0)
        if amount:
            self._move(source_norm, destination_norm, amount)
        logger.info(
            "Moved whole balance",
            extra={
                "event": "token.transfer_all_balance",
                "from": source_norm[:10],
                "to": destination_norm[:10],
                "amount": amount,
            },
        )
        return amount

    # ==================== Manager Functions ====================

    def allow_sender(self, caller: str, address: str) -> None:
        """Whitelist an escrow account so it can release before transfers open."""
        self._require_manager(caller)
        self.trusted_senders.add(self._normalize(address))

    def enable_transfers(self, caller: str) -> None:
        """Open the transferability gate (one-way)."""
        self._require_manager(caller)
        if self.transfers_enabled:
            raise InvalidStateError("Transfers are already enabled")
        self.transfers_enabled = True
        logger.info("Token transfers enabled", extra={"event": "token.transfers_enabled", "token": self.symbol})

    def disable_manager(self, caller: str) -> None:
        """Permanently end the manager relationship."""
        self._require_manager(caller)
        self.manager_enabled = False
        logger.info("Token manager disabled", extra={"event": "token.manager_disabled", "token": self.symbol})

    # ==================== Helpers ====================

    def _normalize(self, address: str) -> str:
        return address.lower()

    def _route(self, sender: str, recipient: str) -> str:
        self._validate_address(recipient, "recipient")
        if self.holders is None:
            return recipient
        if self.is_manager(sender):
            return self.holders.resolve(recipient)
        if self.holders.is_redirected(recipient):
            raise RedirectedRecipientError(
                f"Recipient {recipient} was redirected by a redemption",
                details={"recipient": recipient},
            )
        return recipient

    def _move(self, sender: str, recipient: str, amount: int) -> None:
        self._validate_amount(amount)
        sender_balance = self.balances.get(sender, 0)
        if sender_balance < amount:
            raise InsufficientBalanceError(
                f"Transfer amount exceeds balance ({amount} > {sender_balance})",
                details={"sender": sender, "amount": amount, "balance": sender_balance},
            )
        self.balances[sender] = sender_balance - amount
        self.balances[recipient] = self.balances.get(recipient, 0) + amount
        self._emit_transfer(sender, recipient, amount)

        if self.manager_enabled and self.holders is not None:
            self.holders.observe_balance(sender, self.balances[sender])

        logger.debug(
            "Token transfer",
            extra={
                "event": "token.transfer",
                "token": self.symbol,
                "from": sender[:10],
                "to": recipient[:10],
                "amount": amount,
            },
        )

    def _require_can_send(self, sender: str) -> None:
        if self.transfers_enabled or sender == self.manager or sender in self.trusted_senders:
            return
        raise TransfersLockedError(
            "Transfers are locked until the distribution closes",
            details={"sender": sender},
        )

    def _require_manager(self, caller: str) -> None:
        require_caller(caller, self.manager, "token manager")
        if not self.manager_enabled:
            raise UnauthorizedError("Manager relationship has been disabled")

    def _validate_address(self, address: str, field_name: str) -> None:
        if not address or address == ZERO_ADDRESS:
            raise TokenError(f"Token: {field_name} is zero address")

    def _validate_amount(self, amount: int) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool):
            raise ValueError(f"Amount must be an integer, got {type(amount).__name__}")
        if amount < 0:
            raise ValueError("Amount cannot be negative")
        if amount > UINT256_MAX:
            raise ValueError("Amount exceeds uint256")

    def _emit_transfer(self, from_addr: str, to_addr: str, amount: int) -> None:
        self.events.append(TokenEvent("Transfer", from_addr, to_addr, amount))

    # ==================== Serialization ====================

    def state_dict(self) -> dict[str, Any]:
        return {
            "balances": dict(self.balances),
            "allowances": {k: dict(v) for k, v in self.allowances.items()},
            "events": [event.to_dict() for event in self.events],
            "transfers_enabled": self.transfers_enabled,
            "manager_enabled": self.manager_enabled,
            "trusted_senders": sorted(self.trusted_senders),
        }

    def load_state_dict(self, data: dict[str, Any]) -> None:
        self.balances = {k: int(v) for k, v in data["balances"].items()}
        self.allowances = {k: dict(v) for k, v in data.get("allowances", {}).items()}
        self.events = [TokenEvent(**event) for event in data.get("events", [])]
        self.transfers_enabled = bool(data.get("transfers_enabled", False))
        self.manager_enabled = bool(data.get("manager_enabled", True))
        self.trusted_senders = set(data.get("trusted_senders", []))
