"""Tests for consecutive-day streak computation."""

from datetime import date

import pytest

from dualstore.services.streak import StreakState, next_streak


@pytest.mark.parametrize(
    ("last_active", "current", "longest", "today", "expected"),
    [
        (None, 0, 0, date(2025, 6, 15), StreakState(1, 1)),
        (date(2025, 6, 14), 3, 10, date(2025, 6, 15), StreakState(4, 10)),
        (date(2025, 6, 10), 7, 10, date(2025, 6, 15), StreakState(1, 10)),
        (date(2025, 6, 15), 5, 10, date(2025, 6, 15), StreakState(5, 10)),
        (date(2025, 12, 31), 5, 5, date(2026, 1, 1), StreakState(6, 6)),
    ],
)
def test_next_streak_examples(last_active, current, longest, today, expected) -> None:
    assert next_streak(last_active, current, longest, today) == expected


def test_month_boundary_extends_streak() -> None:
    assert next_streak(date(2024, 2, 29), 2, 2, date(2024, 3, 1)) == StreakState(3, 3)


def test_today_before_last_active_leaves_streak_untouched() -> None:
    assert next_streak(date(2025, 6, 15), 4, 9, date(2025, 6, 13)) == StreakState(4, 9)


def test_longest_streak_grows_with_current() -> None:
    state = next_streak(date(2025, 6, 14), 9, 9, date(2025, 6, 15))
    assert state == StreakState(10, 10)
