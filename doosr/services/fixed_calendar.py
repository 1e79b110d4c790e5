from __future__ import annotations

import calendar
from datetime import date, timedelta

MONTHS = [
    "Martius",
    "Aprilis",
    "Maius",
    "Iunius",
    "Sol",
    "Iulius",
    "Augustus",
    "September",
    "October",
    "November",
    "December",
    "Undecember",
    "Duodecember",
]

# Sunday first; every month opens on dies Solis.
DAY_NAMES = [
    "dies Solis",
    "dies Lunae",
    "dies Martis",
    "dies Mercurii",
    "dies Iovis",
    "dies Veneris",
    "dies Saturni",
]

DAYS_PER_MONTH = 28
LEAP_DAY_NUMBER = 169

RITUAL_DAYS = {
    "new_year": {
        "month": 0,
        "day": 1,
        "name": "New Year (Ostara)",
        "gregorian": "March 20",
        "action": 'Lighting "need-fires" on hills and cleaning the home to remove "winter soot".',
        "symbolism": "People decorated eggs (symbols of new life) and planted the first seeds of the season.",
        "purpose": "To physically and spiritually signal the end of winter dormancy.",
    },
    "beltane": {
        "month": 1,
        "day": 15,
        "name": "Beltane",
        "gregorian": "May 1",
        "action": "Driving livestock between two large bonfires.",
        "symbolism": (
            'Fire was a disinfectant and a "protective shield." People danced around the Maypole '
            "(a phallic symbol of fertility) and gathered hawthorn blossoms."
        ),
        "purpose": (
            "To protect cattle from disease before sending them to summer pastures "
            "and to encourage human procreation."
        ),
    },
    "solstice": {
        "month": 3,
        "day": 10,
        "name": "Solstice (Litha)",
        "gregorian": "June 21",
        "action": (
            "Staying awake all night to watch the sun rise; "
            "rolling flaming wooden wheels down hills into rivers."
        ),
        "symbolism": 'The sun is at its maximum power but begins its "death" toward winter.',
        "purpose": (
            "To \"strengthen\" the sun's energy through sympathetic magic (fire) and to harvest "
            "medicinal herbs, which were believed to be most potent on this night."
        ),
    },
    "lughnasadh": {
        "month": 4,
        "day": 23,
        "name": "Lughnasadh",
        "gregorian": "Aug 1",
        "action": 'The "Trial of the First Grain". Baking a communal loaf from the first harvested wheat.',
        "symbolism": "Large-scale markets, athletic competitions, and handfastings (temporary marriages).",
        "purpose": (
            "To secure the harvest and ensure the community had enough labor "
            "for the upcoming intense reaping period."
        ),
    },
    "autumn_equinox": {
        "month": 6,
        "day": 19,
        "name": "Autumn Equinox (Mabon)",
        "gregorian": "Sept 22",
        "action": "Massive communal feasts. Bringing in the final fruits and vegetables.",
        "symbolism": "Acknowledging the balance of day and night while preparing for the dark.",
        "purpose": "Food preservation. This was the time for drying, pickling, and storing goods to survive the winter.",
    },
    "samhain": {
        "month": 8,
        "day": 2,
        "name": "Samhain",
        "gregorian": "Oct 31",
        "action": (
            "Culling livestock (killing animals that wouldn't survive winter) and leaving "
            '"dumb suppers" (empty chairs/plates) for the dead.'
        ),
        "symbolism": 'The boundary between the living and the dead was considered "thin."',
        "purpose": (
            "Pragmatic meat preservation (salting/smoking) and psychological closure "
            "for those lost during the year."
        ),
    },
    "winter_solstice": {
        "month": 9,
        "day": 25,
        "name": "Winter Solstice (Yule)",
        "gregorian": "Dec 21",
        "action": (
            "Bringing evergreen plants (holly, ivy, pine) indoors and burning a massive oak log "
            "(the Yule Log) for 12 days."
        ),
        "symbolism": (
            "The log's light represented the returning sun; "
            "evergreens symbolized life that does not die in winter."
        ),
        "purpose": (
            "Maintaining morale during the coldest, darkest period and providing "
            "a heat source for communal gathering."
        ),
    },
    "imbolc": {
        "month": 11,
        "day": 11,
        "name": "Imbolc",
        "gregorian": "Feb 1",
        "action": 'Cleaning out the hearth and making "Brigid\'s Crosses" from rushes or straw.',
        "symbolism": "Watching for the first signs of the thaw (like a badger or a groundhog emerging).",
        "purpose": (
            "Preparation for the new agricultural cycle. If the weather was clear, it was an omen "
            "that winter would last longer; if it was stormy, winter was ending."
        ),
    },
    "year_day": {
        "month": None,
        "day": None,
        "name": "Year Day",
        "gregorian": "March 19",
        "action": (
            'Wearing masks to hide identity; the "Lord of Misrule" (a commoner) was given '
            "temporary power over the local leader."
        ),
        "symbolism": 'A "reset" of the social clock where all debts and hierarchies were momentarily ignored.',
        "purpose": "A pressure-release valve for social tensions before the new year began.",
    },
}


def cycle_start(target: date) -> date:
    start = date(target.year, 3, 20)
    if target < start:
        start = date(target.year - 1, 3, 20)
    return start


def is_leap_cycle(start: date) -> bool:
    return calendar.isleap(start.year)


def convert(target: date) -> dict:
    start = cycle_start(target)
    day_number = (target - start).days + 1
    leap = is_leap_cycle(start)
    base = {"year_cycle_start": start, "cycle_year": start.year}

    if leap and day_number == LEAP_DAY_NUMBER:
        return {"type": "leap_day", "display": "Leap Day", "month_index": None, "day": None, **base}

    year_day_number = 366 if leap else 365
    if day_number == year_day_number:
        return {"type": "year_day", "display": "Year Day", "month_index": None, "day": None, **base}

    adjusted = day_number - 1 if leap and day_number > LEAP_DAY_NUMBER else day_number
    month_index = (adjusted - 1) // DAYS_PER_MONTH
    day_of_month = (adjusted - 1) % DAYS_PER_MONTH + 1
    return {
        "type": "regular",
        "display": f"{MONTHS[month_index]} {day_of_month}",
        "month_name": MONTHS[month_index],
        "month_index": month_index,
        "day": day_of_month,
        **base,
    }


def day_name(day_of_month: int) -> str:
    return DAY_NAMES[(day_of_month - 1) % 7]


def format_date(target: date) -> str:
    data = convert(target)
    if data["type"] == "year_day":
        return f"Year Day, {data['cycle_year']}"
    if data["type"] == "leap_day":
        return f"Leap Day, {data['cycle_year']}"
    return f"{day_name(data['day'])}, {data['month_name']} {data['day']}, {data['cycle_year']}"


def ritual_key_for_day(month_index: int | None, day: int | None) -> str | None:
    for key, ritual in RITUAL_DAYS.items():
        if ritual["month"] is None:
            continue
        if ritual["month"] == month_index and ritual["day"] == day:
            return key
    return None


def ritual_for_day(month_index: int | None, day: int | None) -> dict | None:
    key = ritual_key_for_day(month_index, day)
    return RITUAL_DAYS[key] if key else None


def ritual_for_year_day() -> dict:
    return RITUAL_DAYS["year_day"]


def ritual_for_date(target: date) -> dict | None:
    data = convert(target)
    if data["type"] == "year_day":
        return ritual_for_year_day()
    if data["type"] == "leap_day":
        return None
    return ritual_for_day(data["month_index"], data["day"])


def has_ritual(target: date) -> bool:
    return ritual_for_date(target) is not None


def gregorian_for(cycle_year: int, month_index: int, day: int) -> date:
    if not 0 <= month_index < len(MONTHS):
        raise ValueError("Invalid month index")
    if not 1 <= day <= DAYS_PER_MONTH:
        raise ValueError("Invalid day")
    start = date(cycle_year, 3, 20)
    day_number = month_index * DAYS_PER_MONTH + day
    if is_leap_cycle(start) and day_number >= LEAP_DAY_NUMBER:
        day_number += 1
    return start + timedelta(days=day_number - 1)


def month_view(cycle_year: int, month_index: int) -> dict:
    cells = []
    for day in range(1, DAYS_PER_MONTH + 1):
        gregorian = gregorian_for(cycle_year, month_index, day)
        cells.append(
            {
                "day": day,
                "weekday": day_name(day),
                "gregorian": gregorian,
                "ritual": ritual_key_for_day(month_index, day),
            }
        )
    return {
        "cycle_year": cycle_year,
        "month_index": month_index,
        "month_name": MONTHS[month_index],
        "days": cells,
    }


def describe(target: date) -> dict:
    data = convert(target)
    payload = {
        **data,
        "date": target,
        "formatted": format_date(target),
        "ritual": ritual_for_date(target),
    }
    if data["type"] == "regular":
        payload["weekday"] = day_name(data["day"])
    return payload
