"""
Distribution exception hierarchy.

Every operation of the distribution subsystem raises one of these typed
exceptions so callers (and the atomic executor) can tell a caller mistake
from a phase/window violation or a rejected proof.
"""

from __future__ import annotations

from typing import Any


class DistributionError(Exception):
    """Base exception for all distribution errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether retrying the same call later can succeed
    """

    recoverable = False

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if recoverable is not None:
            self.recoverable = recoverable


# ==================== Phase / Window Errors ====================


class InvalidStateError(DistributionError):
    """Raised when an operation is attempted outside its legal phase or window."""
    recoverable = True  # Most phases/windows open later


class RedemptionWindowClosedError(InvalidStateError):
    """Raised when redeeming before distribution start or after the window ends."""
    pass


class TransfersLockedError(InvalidStateError):
    """Raised when a holder transfers before the distribution is closed."""
    pass


class RedirectedRecipientError(InvalidStateError):
    """Raised when tokens are sent to an address superseded by a redemption."""
    recoverable = False


class InsufficientVestedError(InvalidStateError):
    """Raised when a vesting release finds nothing releasable."""
    pass


# ==================== Already Done ====================


class AlreadyDoneError(DistributionError):
    """Raised when a one-shot operation is repeated."""
    pass


class AlreadyRedeemedError(AlreadyDoneError):
    """Raised when a contributor address has already been redeemed."""
    pass


class DestinationInUseError(AlreadyDoneError):
    """Raised when a redemption destination is already a contributor identity."""
    pass


class BeneficiaryAlreadySetError(AlreadyDoneError):
    """Raised when a vesting account beneficiary is bound twice."""
    pass


class DistributionClosedError(AlreadyDoneError):
    """Raised when advancing a distribution that has already closed."""
    pass


class NothingToRecoverError(AlreadyDoneError):
    """Raised when a recovery scan cursor already reached the end."""
    pass


# ==================== Lookup Errors ====================


class NotFoundError(DistributionError):
    """Raised when a referenced record or identity does not exist."""
    pass


class NoMatchingShareholderError(NotFoundError):
    """Raised when no unassigned shareholder record matches an amount."""
    pass


class NotContributorError(NotFoundError):
    """Raised when a redemption source is not an original contributor."""
    pass


# ==================== Proof Errors ====================


class ProofRejectedError(DistributionError):
    """Raised when a redemption proof cannot be accepted."""
    pass


class MalformedAddressError(ProofRejectedError):
    """Raised when an ASCII address payload is not 40/42 hex characters."""
    pass


class InvalidProofError(ProofRejectedError):
    """Raised when the recovered signer does not match the claimed signer."""
    pass


# ==================== Budget Errors ====================


class NoProgressError(DistributionError):
    """Raised when a budget-bounded call could not perform a single unit of work.

    Distinct from a partial-progress return: this indicates the caller sized
    the budget wrong, not that more calls are needed.
    """
    pass


class OutOfGasError(DistributionError):
    """Raised by the host gas meter when a unit of work cannot be paid for."""
    recoverable = True  # Retry with a larger gas limit


# ==================== Access / Token Errors ====================


class UnauthorizedError(DistributionError):
    """Raised when the caller lacks the owner/manager capability."""
    pass


class TokenError(DistributionError):
    """Raised when a token ledger operation fails."""
    pass


class InsufficientBalanceError(TokenError):
    """Raised when an account lacks sufficient balance for a transfer."""
    pass


class InsufficientAllowanceError(TokenError):
    """Raised when a delegated transfer exceeds the approved allowance."""
    pass


# ==================== Persistence Errors ====================


class CorruptedStateError(DistributionError):
    """Raised when a stored checkpoint fails its integrity check."""
    pass


def get_error_context(exc: Exception) -> dict[str, Any]:
    """Extract error context from an exception for logging.

    Args:
        exc: The exception to extract context from

    Returns:
        Dictionary containing error type, message, and any additional details
    """
    context: dict[str, Any] = {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
    }
    if isinstance(exc, DistributionError):
        context["recoverable"] = exc.recoverable
        if exc.details:
            context["details"] = exc.details
    return context
