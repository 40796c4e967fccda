"""
Host runtime model.

Every distribution operation runs inside a ``CallContext`` that carries the
caller, the block timestamp and a ``GasMeter`` holding the per-invocation
computation budget. ``AtomicExecutor`` runs one operation at a time and
restores the whole deployment if the operation raises, so an operation
either commits completely (possibly having advanced a resumable scan by a
bounded amount) or leaves no trace.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from tokendist.core.addresses import normalize_address
from tokendist.core.constants import DEFAULT_CALL_GAS_LIMIT
from tokendist.core.exceptions import OutOfGasError, get_error_context

if TYPE_CHECKING:
    from tokendist.core.deployment import Deployment
    from tokendist.core.state_store import StateStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GasMeter:
    """Tracks consumption against a fixed per-call gas limit."""

    def __init__(self, gas_limit: int):
        if gas_limit < 0:
            raise ValueError("Gas limit cannot be negative")
        self.gas_limit = gas_limit
        self.gas_used = 0

    @property
    def remaining(self) -> int:
        return self.gas_limit - self.gas_used

    def has_budget(self, min_budget: int) -> bool:
        return self.remaining >= min_budget

    def consume(self, cost: int, operation: str = "") -> None:
        """Consume gas for one unit of work; raises when the limit would be exceeded."""
        if cost > self.remaining:
            raise OutOfGasError(
                f"Out of gas: {operation or 'operation'} needs {cost}, {self.remaining} left",
                details={"gas_used": self.gas_used, "gas_limit": self.gas_limit, "cost": cost},
            )
        self.gas_used += cost


@dataclass
class CallContext:
    """Caller, timestamp and budget of a single invocation."""

    caller: str
    timestamp: int
    gas: GasMeter = field(default_factory=lambda: GasMeter(DEFAULT_CALL_GAS_LIMIT))

    def __post_init__(self) -> None:
        self.caller = normalize_address(self.caller)
        self.timestamp = int(self.timestamp)

    def forward(self, caller: str) -> "CallContext":
        """Context for a nested call made by a contract, sharing time and gas."""
        return CallContext(caller=caller, timestamp=self.timestamp, gas=self.gas)


@dataclass(frozen=True)
class BatchResult:
    """Outcome of one budget-bounded call.

    ``finished`` is False when the scan stopped because the budget ran out;
    the caller resumes it with another call.
    """

    units: int
    finished: bool

    def to_dict(self) -> dict[str, Any]:
        return {"units": self.units, "finished": self.finished}


def require_positive_budget(min_budget: int) -> None:
    if not isinstance(min_budget, int) or min_budget <= 0:
        raise ValueError(f"min_budget must be a positive integer, got {min_budget!r}")


class AtomicExecutor:
    """Runs operations all-or-nothing against a deployment and checkpoints the result."""

    def __init__(
        self,
        deployment: "Deployment",
        store: "StateStore | None" = None,
        default_gas_limit: int = DEFAULT_CALL_GAS_LIMIT,
        time_provider: Callable[[], float] | None = None,
    ):
        self.deployment = deployment
        self.store = store
        self.default_gas_limit = default_gas_limit
        self._time_provider = time_provider or time.time

    def context(
        self,
        caller: str,
        timestamp: int | None = None,
        gas_limit: int | None = None,
    ) -> CallContext:
        now = int(timestamp if timestamp is not None else self._time_provider())
        return CallContext(
            caller=caller,
            timestamp=now,
            gas=GasMeter(self.default_gas_limit if gas_limit is None else gas_limit),
        )

    def call(
        self,
        operation: Callable[..., T],
        *args: Any,
        caller: str,
        timestamp: int | None = None,
        gas_limit: int | None = None,
        **kwargs: Any,
    ) -> T:
        """
        Execute ``operation(ctx, *args, **kwargs)`` atomically.

        Raises:
            Whatever the operation raises, after restoring the pre-call state
        """
        ctx = self.context(caller, timestamp=timestamp, gas_limit=gas_limit)
        snapshot = self.deployment.state_dict()
        name = getattr(operation, "__name__", repr(operation))
        try:
            result = operation(ctx, *args, **kwargs)
        except Exception as exc:
            self.deployment.load_state_dict(snapshot)
            logger.warning(
                "Call %s rolled back: %s",
                name,
                exc,
                extra={"event": "runtime.rollback", "operation": name, **get_error_context(exc)},
            )
            raise

        if self.store is not None:
            self.store.save(self.deployment.state_dict())
        logger.debug(
            "Call %s committed",
            name,
            extra={
                "event": "runtime.commit",
                "operation": name,
                "gas_used": ctx.gas.gas_used,
                "timestamp": ctx.timestamp,
            },
        )
        return result
