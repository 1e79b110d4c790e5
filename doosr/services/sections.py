"""Permanent sections and the user preferences that drive day structure."""
from __future__ import annotations

import copy

from doosr import repositories
from doosr.clock import parse_date
from doosr.descendants import Descendant
from doosr.settings import get_settings

MIGRATION_OPTIONS = {
    "links": {
        "type": "boolean",
        "default": True,
        "label": "Migrate Links",
        "description": "Include links when importing from previous day",
    },
    "notes": {
        "type": "boolean",
        "default": False,
        "label": "Migrate Notes",
        "description": "Include notes when importing",
    },
    "items": {
        "label": "Per Item Settings",
        "sections_with_no_active_items": {
            "type": "boolean",
            "default": True,
            "label": "Migrate Empty Sections",
            "description": "Migrate sections even when they have no active items (inactive items are never migrated)",
        },
        "notes": {
            "type": "boolean",
            "default": True,
            "label": "Migrate Item Notes",
            "description": "Include notes within items",
        },
    },
}


def _build_defaults(options: dict) -> dict:
    result = {}
    for key, value in options.items():
        if not isinstance(value, dict):
            continue
        if "type" in value:
            result[key] = value["default"]
        else:
            result[key] = _build_defaults(value)
    return result


def migration_defaults() -> dict:
    return _build_defaults(MIGRATION_OPTIONS)


def _merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def migration_settings_for(user: dict) -> dict:
    stored = (user.get("settings") or {}).get("day_migration_settings")
    return _merge(migration_defaults(), stored if isinstance(stored, dict) else {})


def normalize_section_titles(titles) -> list[str]:
    cleaned = []
    seen = set()
    for title in titles or []:
        title = " ".join(str(title or "").split())
        if not title or title.lower() in seen:
            continue
        seen.add(title.lower())
        cleaned.append(title)
    return cleaned


def permanent_section_titles(user: dict) -> list[str]:
    stored = (user.get("settings") or {}).get("permanent_sections")
    if isinstance(stored, list):
        return normalize_section_titles(stored)
    return get_settings().default_permanent_sections


def is_permanent_section(item: dict | None) -> bool:
    if not item or item.get("item_type") != "section":
        return False
    return bool((item.get("extra_data") or {}).get("permanent_section"))


async def find_section_in(descendant: Descendant | None, title: str) -> dict | None:
    if descendant is None:
        return None
    item_ids = descendant.extract_active_item_ids()
    items = await repositories.get_items(item_ids)
    wanted = title.strip().lower()
    for item_id in item_ids:
        item = items.get(item_id)
        if item and item["item_type"] == "section" and item["title"].lower() == wanted:
            return item
    return None


async def create_permanent_section(user: dict, title: str) -> dict:
    return await repositories.create_item(
        user["id"],
        {"title": title, "item_type": "section", "state": "todo", "extra_data": {"permanent_section": True}},
    )


async def add_permanent_sections(day: dict, user: dict) -> int:
    titles = permanent_section_titles(user)
    if not titles:
        return 0
    descendant = await repositories.ensure_descendant("Day", day["id"])
    added = 0
    for title in titles:
        if await find_section_in(descendant, title):
            continue
        section = await create_permanent_section(user, title)
        descendant.add_active_item(section["id"])
        added += 1
    if added:
        await repositories.save_descendant(descendant)
    return added


async def ensure_day(user: dict, target) -> dict:
    """Existing day for ``target``, or a new open day; permanent sections are always ensured."""
    target = parse_date(target)
    day = await repositories.get_day_by_date(user["id"], target.isoformat())
    if day is None:
        day = await repositories.create_day(user["id"], target.isoformat())
    else:
        await repositories.ensure_descendant("Day", day["id"])
    await add_permanent_sections(day, user)
    return day


async def matching_section_descendant(user: dict, day: dict, title: str) -> Descendant:
    descendant = await repositories.ensure_descendant("Day", day["id"])
    section = await find_section_in(descendant, title)
    if section is None:
        section = await create_permanent_section(user, title)
        descendant.add_active_item(section["id"])
        await repositories.save_descendant(descendant)
    return await repositories.ensure_descendant("Item", section["id"])
