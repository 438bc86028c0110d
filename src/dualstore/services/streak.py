"""Consecutive-day activity streaks.

Inputs are calendar dates, never instants, so the day difference is immune
to time-of-day and DST shifts.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date


@dataclass(frozen=True)
class StreakState:
    current_streak: int
    longest_streak: int


def next_streak(
    last_active_date: date | None,
    current_streak: int,
    longest_streak: int,
    today: date,
) -> StreakState:
    """Return the streak after activity on ``today``.

    Re-entry on the same day changes nothing. A gap of exactly one day
    extends the streak, a longer gap restarts it at 1, and a ``today`` that
    is not after the last active day leaves it untouched.
    """
    if last_active_date == today:
        return StreakState(current_streak, longest_streak)

    current = current_streak
    if last_active_date is None:
        current = 1
    else:
        gap = (today - last_active_date).days
        if gap == 1:
            current += 1
        elif gap > 1:
            current = 1

    return StreakState(current, max(longest_streak, current))
