"""
Allocation sources.

The distribution engine reads beneficiaries through the ``AllocationSource``
protocol while the distribution phase runs. ``StaticAllocationSource`` holds
validated in-memory lists; ``load_allocation_file`` builds one from YAML or
JSON:

    reserve_entity: {address: "0x...", amount: 5000}
    shareholders:
      - {address: "0x...", amount: 1200}
      - {address: null, amount: 800}      # beneficiary bound later
    contributors:
      - {address: "0x...", amount: 100}
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Iterable, NamedTuple, Protocol

import yaml

from tokendist.core.addresses import normalize_address
from tokendist.core.constants import BONUS_STAGES

logger = logging.getLogger(__name__)


class Allocation(NamedTuple):
    address: str | None
    amount: int


class AllocationSource(Protocol):
    """Read-only enumeration of beneficiaries and their allocation amounts."""

    def contributor_count(self) -> int: ...

    def contributor_at(self, index: int) -> Allocation: ...

    def shareholder_count(self) -> int: ...

    def shareholder_at(self, index: int) -> Allocation: ...

    def reserve_entity_allocation(self) -> Allocation: ...


def _coerce(entry: Any, label: str, address_required: bool) -> Allocation:
    if isinstance(entry, dict):
        address, amount = entry.get("address"), entry.get("amount")
    else:
        address, amount = entry
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError(f"{label}: amount must be a positive integer, got {amount!r}")
    if address is None:
        if address_required:
            raise ValueError(f"{label}: address is required")
        return Allocation(None, amount)
    return Allocation(normalize_address(address), amount)


class StaticAllocationSource:
    """In-memory allocation lists, validated on construction."""

    def __init__(
        self,
        reserve_entity: Allocation | tuple[str, int],
        shareholders: Iterable[Allocation | tuple[str | None, int] | dict] = (),
        contributors: Iterable[Allocation | tuple[str, int] | dict] = (),
    ):
        self._reserve = _coerce(reserve_entity, "reserve_entity", address_required=True)
        self._shareholders = [
            _coerce(entry, f"shareholders[{i}]", address_required=False)
            for i, entry in enumerate(shareholders)
        ]
        self._contributors = [
            _coerce(entry, f"contributors[{i}]", address_required=True)
            for i, entry in enumerate(contributors)
        ]
        seen: set[str] = set()
        for allocation in self._contributors:
            if allocation.address in seen:
                raise ValueError(f"Duplicate contributor address {allocation.address}")
            seen.add(allocation.address)

    def contributor_count(self) -> int:
        return len(self._contributors)

    def contributor_at(self, index: int) -> Allocation:
        return self._contributors[index]

    def shareholder_count(self) -> int:
        return len(self._shareholders)

    def shareholder_at(self, index: int) -> Allocation:
        return self._shareholders[index]

    def reserve_entity_allocation(self) -> Allocation:
        return self._reserve

    def total_allocated(self) -> int:
        return (
            self._reserve.amount
            + sum(a.amount for a in self._shareholders)
            + sum(a.amount for a in self._contributors)
        )

    def contributor_total(self) -> int:
        return sum(a.amount for a in self._contributors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "reserve_entity": self._reserve._asdict(),
            "shareholders": [a._asdict() for a in self._shareholders],
            "contributors": [a._asdict() for a in self._contributors],
        }


def required_supply(source: StaticAllocationSource) -> int:
    """Supply covering every allocation plus the largest possible bonus payout."""
    bonus_reserve = sum(source.contributor_total() * percent // 100 for _, percent in BONUS_STAGES)
    return source.total_allocated() + bonus_reserve


def load_allocation_file(path: str | os.PathLike[str]) -> StaticAllocationSource:
    """
    Load allocations from a YAML (or JSON) document.

    Raises:
        ValueError: If the document is missing sections or has invalid entries
    """
    source_path = Path(path)
    data = yaml.safe_load(source_path.read_text(encoding="utf-8"))
    if not isinstance(data, dict) or "reserve_entity" not in data:
        raise ValueError(f"{source_path}: expected a mapping with a reserve_entity entry")
    source = StaticAllocationSource(
        reserve_entity=data["reserve_entity"],
        shareholders=data.get("shareholders") or [],
        contributors=data.get("contributors") or [],
    )
    logger.info(
        "Loaded allocations from %s",
        source_path,
        extra={
            "event": "allocations.loaded",
            "shareholders": source.shareholder_count(),
            "contributors": source.contributor_count(),
        },
    )
    return source
