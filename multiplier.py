"""Allocation multiplier from completed referrals.

- Base: 2x for every validated holder
- Bonus: 1x per completed referral, counting at most 3 referrals
- Total: base + bonus, hard capped at 3x

The hard cap equals the maximum bonus, so the total reaches 3x after the first
referral and stays there. Display logic depends on exactly these numbers.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

BASE_MULTIPLIER = 2
BONUS_PER_REFERRAL = 1
MAX_BONUS_REFERRALS = 3
HARD_CAP = 3


@dataclass(frozen=True)
class Multiplier:
    base: int
    bonus: int
    total: int
    max_bonus_reached: bool

    def to_dict(self):
        return asdict(self)


def calculate(completed_referrals: int) -> Multiplier:
    completed = max(0, int(completed_referrals or 0))
    bonus = min(completed, MAX_BONUS_REFERRALS) * BONUS_PER_REFERRAL
    total = min(BASE_MULTIPLIER + bonus, HARD_CAP)
    return Multiplier(
        base=BASE_MULTIPLIER,
        bonus=bonus,
        total=total,
        max_bonus_reached=completed >= MAX_BONUS_REFERRALS,
    )
