from __future__ import annotations

import calendar
import json
from datetime import date, timedelta

FREQUENCIES = ("daily", "every_weekday", "every_n_days", "weekly", "monthly", "yearly")


def parse_rule(rule) -> dict | None:
    if rule is None or rule == "":
        return None
    if isinstance(rule, dict):
        return rule
    try:
        parsed = json.loads(rule)
    except (TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _sunday_based_weekday(value: date) -> int:
    return (value.weekday() + 1) % 7


def _add_months(value: date, months: int) -> date:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(value.day, last_day))


def _as_int(value, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def next_occurrence(rule, from_date: date) -> date | None:
    """Next date a recurring item falls on after ``from_date``; None when the rule is unusable."""
    rule = parse_rule(rule)
    if not rule:
        return None
    frequency = rule.get("frequency")

    if frequency == "daily":
        return from_date + timedelta(days=1)

    if frequency == "every_weekday":
        candidate = from_date + timedelta(days=1)
        while candidate.weekday() >= 5:
            candidate += timedelta(days=1)
        return candidate

    if frequency == "every_n_days":
        interval = _as_int(rule.get("interval"))
        if interval <= 0:
            return None
        return from_date + timedelta(days=interval)

    if frequency == "weekly":
        days_of_week = rule.get("days_of_week")
        if not isinstance(days_of_week, list) or not days_of_week:
            return None
        valid_days = sorted({day for day in (_as_int(value, -1) for value in days_of_week) if 0 <= day <= 6})
        if not valid_days:
            return None
        candidate = from_date + timedelta(days=1)
        for _ in range(7):
            if _sunday_based_weekday(candidate) in valid_days:
                return candidate
            candidate += timedelta(days=1)
        return None

    if frequency == "monthly":
        return _add_months(from_date, 1)

    if frequency == "yearly":
        try:
            return from_date.replace(year=from_date.year + 1)
        except ValueError:
            return from_date.replace(year=from_date.year + 1, day=28)

    return None


def validate_rule(rule) -> dict | None:
    """Normalize an incoming rule for storage; raises ValueError on a malformed one."""
    parsed = parse_rule(rule)
    if rule not in (None, "") and parsed is None:
        raise ValueError("Recurrence rule must be a JSON object")
    if parsed is None:
        return None
    if parsed.get("frequency") not in FREQUENCIES:
        raise ValueError(f"Invalid recurrence frequency: {parsed.get('frequency')}")
    if parsed["frequency"] == "every_n_days" and _as_int(parsed.get("interval")) <= 0:
        raise ValueError("Interval must be a positive number of days")
    if parsed["frequency"] == "weekly" and not isinstance(parsed.get("days_of_week"), list):
        raise ValueError("Weekly recurrence needs days_of_week")
    return parsed
