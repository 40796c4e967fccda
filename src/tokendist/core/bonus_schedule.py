"""
Post-sale bonus stages.

Stage ``i`` becomes payable ``stage_offset(i)`` seconds after distribution
start and pays ``bonus_percent(i)`` percent of each contributor's tracked
minimum retained balance.
"""

from __future__ import annotations

from tokendist.core.constants import BONUS_STAGES

STAGE_COUNT = len(BONUS_STAGES)


def _check_stage(stage: int) -> None:
    if not 0 <= stage < STAGE_COUNT:
        raise ValueError(f"Bonus stage must be in [0, {STAGE_COUNT}), got {stage}")


def bonus_percent(stage: int) -> int:
    _check_stage(stage)
    return BONUS_STAGES[stage][1]


def stage_offset(stage: int) -> int:
    _check_stage(stage)
    return BONUS_STAGES[stage][0]


def stage_deadline(distribution_start: int, stage: int) -> int:
    """Timestamp from which ``stage`` may be paid."""
    return distribution_start + stage_offset(stage)


def bonus_amount(minimum_balance: int, stage: int) -> int:
    """Bonus owed for ``minimum_balance`` at ``stage`` (truncating)."""
    if minimum_balance < 0:
        raise ValueError("Minimum balance cannot be negative")
    return minimum_balance * bonus_percent(stage) // 100


def is_final(stage: int) -> bool:
    return stage == STAGE_COUNT - 1
