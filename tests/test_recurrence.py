from datetime import date

import pytest

from doosr.services import recurrence


def test_daily_and_every_n_days():
    assert recurrence.next_occurrence({"frequency": "daily"}, date(2025, 1, 31)) == date(2025, 2, 1)
    assert recurrence.next_occurrence({"frequency": "every_n_days", "interval": 3}, date(2025, 1, 1)) == date(2025, 1, 4)
    assert recurrence.next_occurrence({"frequency": "every_n_days", "interval": 0}, date(2025, 1, 1)) is None


def test_every_weekday_skips_weekend():
    # 2025-01-03 is a Friday
    assert recurrence.next_occurrence({"frequency": "every_weekday"}, date(2025, 1, 3)) == date(2025, 1, 6)
    assert recurrence.next_occurrence({"frequency": "every_weekday"}, date(2025, 1, 6)) == date(2025, 1, 7)


def test_weekly_uses_sunday_based_days():
    rule = {"frequency": "weekly", "days_of_week": [0, 3]}
    # Monday 2025-01-06 -> Wednesday 2025-01-08
    assert recurrence.next_occurrence(rule, date(2025, 1, 6)) == date(2025, 1, 8)
    # Wednesday -> following Sunday
    assert recurrence.next_occurrence(rule, date(2025, 1, 8)) == date(2025, 1, 12)
    assert recurrence.next_occurrence({"frequency": "weekly", "days_of_week": []}, date(2025, 1, 6)) is None


def test_monthly_clamps_to_month_end():
    assert recurrence.next_occurrence({"frequency": "monthly"}, date(2025, 1, 31)) == date(2025, 2, 28)
    assert recurrence.next_occurrence({"frequency": "monthly"}, date(2025, 12, 15)) == date(2026, 1, 15)


def test_yearly_handles_leap_day():
    assert recurrence.next_occurrence({"frequency": "yearly"}, date(2024, 2, 29)) == date(2025, 2, 28)


def test_rule_can_be_json_text():
    assert recurrence.next_occurrence('{"frequency": "daily"}', date(2025, 1, 1)) == date(2025, 1, 2)
    assert recurrence.next_occurrence("nonsense", date(2025, 1, 1)) is None
    assert recurrence.next_occurrence({"frequency": "hourly"}, date(2025, 1, 1)) is None


def test_validate_rule():
    assert recurrence.validate_rule(None) is None
    assert recurrence.validate_rule({"frequency": "daily"}) == {"frequency": "daily"}
    with pytest.raises(ValueError):
        recurrence.validate_rule({"frequency": "hourly"})
    with pytest.raises(ValueError):
        recurrence.validate_rule({"frequency": "every_n_days", "interval": -2})
    with pytest.raises(ValueError):
        recurrence.validate_rule("[1, 2]")
