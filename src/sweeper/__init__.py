"""Daily invariant sweep and its scheduler."""

from .daily_sweep import OPEN_CLAIM_STATUSES, InvariantSweeper, SweepReport
from .scheduler import DailyScheduler

__all__ = [
    "DailyScheduler",
    "InvariantSweeper",
    "OPEN_CLAIM_STATUSES",
    "SweepReport",
]
