from datetime import date

import pytest

from doosr.services import fixed_calendar


def test_cycle_starts_on_march_twentieth():
    data = fixed_calendar.convert(date(2025, 3, 20))
    assert data["type"] == "regular"
    assert data["month_name"] == "Martius"
    assert data["day"] == 1
    assert data["cycle_year"] == 2025
    assert fixed_calendar.format_date(date(2025, 3, 20)) == "dies Solis, Martius 1, 2025"


def test_dates_before_march_twentieth_belong_to_previous_cycle():
    assert fixed_calendar.cycle_start(date(2025, 3, 19)) == date(2024, 3, 20)
    assert fixed_calendar.cycle_start(date(2025, 1, 1)) == date(2024, 3, 20)


def test_month_boundaries():
    assert fixed_calendar.convert(date(2025, 4, 16))["display"] == "Martius 28"
    assert fixed_calendar.convert(date(2025, 4, 17))["display"] == "Aprilis 1"


def test_year_day_in_common_cycle():
    data = fixed_calendar.convert(date(2026, 3, 19))
    assert data["type"] == "year_day"
    assert data["cycle_year"] == 2025
    assert fixed_calendar.format_date(date(2026, 3, 19)) == "Year Day, 2025"
    assert fixed_calendar.ritual_for_date(date(2026, 3, 19))["name"] == "Year Day"


def test_leap_day_follows_iunius_in_leap_cycle():
    assert fixed_calendar.convert(date(2024, 9, 4))["type"] == "leap_day"
    assert fixed_calendar.format_date(date(2024, 9, 4)) == "Leap Day, 2024"
    after = fixed_calendar.convert(date(2024, 9, 5))
    assert after["display"] == "Augustus 1"
    assert fixed_calendar.ritual_for_date(date(2024, 9, 4)) is None


def test_leap_day_number_is_ordinary_in_common_cycle():
    assert fixed_calendar.convert(date(2025, 9, 4))["type"] == "regular"


def test_weekdays_repeat_every_seven_days():
    assert fixed_calendar.day_name(1) == "dies Solis"
    assert fixed_calendar.day_name(7) == "dies Saturni"
    assert fixed_calendar.day_name(8) == "dies Solis"
    assert fixed_calendar.day_name(28) == "dies Saturni"


def test_rituals():
    assert fixed_calendar.ritual_key_for_day(0, 1) == "new_year"
    assert fixed_calendar.ritual_key_for_day(1, 15) == "beltane"
    assert fixed_calendar.ritual_key_for_day(2, 15) is None
    assert fixed_calendar.has_ritual(date(2025, 5, 1))
    assert not fixed_calendar.has_ritual(date(2025, 5, 2))


def test_gregorian_for_is_inverse_of_convert():
    assert fixed_calendar.gregorian_for(2025, 0, 1) == date(2025, 3, 20)
    assert fixed_calendar.gregorian_for(2025, 1, 15) == date(2025, 5, 1)
    assert fixed_calendar.gregorian_for(2024, 6, 1) == date(2024, 9, 5)


@pytest.mark.parametrize("month_index, day", [(-1, 1), (13, 1), (0, 0), (0, 29)])
def test_gregorian_for_rejects_out_of_range(month_index, day):
    with pytest.raises(ValueError):
        fixed_calendar.gregorian_for(2025, month_index, day)


def test_month_view_lists_all_days():
    view = fixed_calendar.month_view(2025, 0)
    assert view["month_name"] == "Martius"
    assert len(view["days"]) == 28
    assert view["days"][0]["ritual"] == "new_year"
    assert view["days"][-1]["gregorian"] == date(2025, 4, 16)


def test_describe_adds_weekday_for_regular_days():
    payload = fixed_calendar.describe(date(2025, 3, 21))
    assert payload["weekday"] == "dies Lunae"
    assert payload["ritual"] is None
    assert "weekday" not in fixed_calendar.describe(date(2026, 3, 19))
