"""
tokendist constants

Time units, per-unit gas costs for the budget-bounded scans, and the
fixed bonus stage table.
"""

from __future__ import annotations

# ==================== TIME ====================

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR
MONTH = 30 * DAY
YEAR = 365 * DAY

# Redemption stays open for one year after distribution start
REDEMPTION_WINDOW = YEAR

# Delay between the reserve allocation and distribution start
DEFAULT_GRACE_PERIOD = 7 * DAY

# Window during which an unassigned shareholder escrow can still be bound
DEFAULT_SHAREHOLDER_RECOVERY_DEADLINE = 180 * DAY

# ==================== GAS ====================
#
# One "unit" of work is what a single loop iteration of a scan performs.
# Callers size ``min_budget`` to at least the cost of the unit they expect
# next; the scan keeps going while the meter still has ``min_budget`` left.

# Create a vesting account and fund it (reserve entity or one shareholder)
ESCROW_UNIT_GAS = 250_000

# Pay one contributor directly, or pay one contributor a bonus
PAYMENT_UNIT_GAS = 60_000

# Inspect one distribution record / contributor identity during a recovery scan
RECORD_SCAN_GAS = 5_000

# Recover one unassigned shareholder escrow back to the engine
RECOVER_UNIT_GAS = 40_000

# Force-redirect one never-redeemed contributor to the reserve entity
REDIRECT_UNIT_GAS = 50_000

# Close the distribution / disable the manager and sweep residual funds
FINALIZE_GAS = 30_000

DEFAULT_CALL_GAS_LIMIT = 8_000_000

# ==================== BONUS STAGES ====================

# (offset from distribution start, percent of tracked minimum balance)
BONUS_STAGES: tuple[tuple[int, int], ...] = (
    (3 * MONTH, 20),
    (6 * MONTH, 5),
    (9 * MONTH, 5),
)

# ==================== ADDRESSES ====================

ZERO_ADDRESS = "0x" + "0" * 40

# Literal signed by a contributor to authorize an administrator-chosen destination
DELEGATION_TOKEN = b"DELEGATION"

# Deterministic contract addresses are derived from these labels
ENGINE_ADDRESS_LABEL = "tokendist.engine"
LEDGER_ADDRESS_LABEL = "tokendist.redemption_ledger"
TOKEN_ADDRESS_LABEL = "tokendist.token"
VESTING_ADDRESS_LABEL = "tokendist.vesting"
