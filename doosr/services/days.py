from __future__ import annotations

import logging

from doosr import repositories
from doosr.clock import parse_date, today, utc_now_iso
from doosr.descendants import Descendant
from doosr.errors import NotFoundError
from doosr.services import items as item_service
from doosr.services import sections

logger = logging.getLogger(__name__)

LINKABLE_TYPES = {"List", "Checklist", "Journal", "Note"}


async def open_day(user: dict, target) -> dict:
    target = parse_date(target)
    day = await repositories.get_day_by_date(user["id"], target.isoformat())
    if day and day["state"] == "open":
        return {"day": day, "created": False, "reopened": False}
    if day:
        await repositories.update_day(day["id"], {"state": "open", "reopened_at": utc_now_iso()})
        return {"day": await repositories.get_day_by_id(day["id"]), "created": False, "reopened": True}

    day = await repositories.create_day(user["id"], target.isoformat())
    await sections.add_permanent_sections(day, user)
    logger.info("Opened day %s for user %s", day["date"], user["id"])
    return {"day": day, "created": True, "reopened": False}


async def close_day(day: dict) -> dict:
    if day["state"] == "closed":
        return day
    await repositories.update_day(day["id"], {"state": "closed", "closed_at": utc_now_iso()})
    return await repositories.get_day_by_id(day["id"])


async def reopen_day(day: dict) -> dict:
    if day["state"] == "open":
        return day
    await repositories.update_day(day["id"], {"state": "open", "reopened_at": utc_now_iso()})
    return await repositories.get_day_by_id(day["id"])


async def find_latest_importable_day(user: dict, current_date) -> dict | None:
    return await repositories.find_latest_importable_day(user["id"], parse_date(current_date).isoformat())


async def find_previous_day(user: dict, current_date) -> dict | None:
    return await repositories.find_previous_day(user["id"], parse_date(current_date).isoformat())


async def validate_import_conditions(user: dict, source_day: dict | None, target_date) -> None:
    target = parse_date(target_date)
    if source_day is None:
        raise ValueError("No closed day available to import from")
    if source_day["state"] != "closed":
        raise ValueError("Source day must be closed before importing")
    if parse_date(source_day["date"]) >= target:
        raise ValueError("Cannot import from a day that is not before the target date")
    if target > today():
        raise ValueError("Cannot import to a future date")
    existing = await repositories.get_day_by_date(user["id"], target.isoformat())
    if existing and existing.get("imported_from_day_id"):
        raise ValueError("Target day has already been imported from another day")


def _should_migrate(item: dict, migration_settings: dict) -> bool:
    if item["item_type"] == "section":
        if sections.is_permanent_section(item):
            return False
        return migration_settings.get("active_item_sections") is not False
    return item["state"] == "todo"


async def migrate_day(user: dict, source_day: dict, target_date, migration_settings: dict | None = None) -> dict:
    """Copy the migratable items of ``source_day`` onto ``target_date`` and mark the import chain."""
    if source_day.get("imported_to_day_id"):
        target_day = await repositories.get_day_by_id(source_day["imported_to_day_id"])
        imported_to = target_day["date"] if target_day else "another day"
        raise ValueError(f"This day has already been migrated to {imported_to}. Cannot migrate again.")
    if migration_settings is None:
        migration_settings = sections.migration_settings_for(user)
    copy_settings = migration_settings.get("items") or {}

    async with repositories.transaction():
        target_day = await sections.ensure_day(user, target_date)
        source_descendant = await repositories.get_descendant_for("Day", source_day["id"])
        migrated = 0

        if source_descendant is not None:
            top_ids = source_descendant.extract_active_item_ids()
            top_items = await repositories.get_items(top_ids)

            for item_id in top_ids:
                section = top_items.get(item_id)
                if not sections.is_permanent_section(section):
                    continue
                section_descendant = await repositories.get_descendant_for("Item", section["id"])
                if section_descendant is None:
                    continue
                child_ids = section_descendant.extract_active_item_ids()
                children = await repositories.get_items(child_ids)
                target_descendant = None
                for child_id in child_ids:
                    child = children.get(child_id)
                    if child is None or not _should_migrate(child, migration_settings):
                        continue
                    if target_descendant is None:
                        target_descendant = await sections.matching_section_descendant(
                            user, target_day, section["title"]
                        )
                    await item_service.copy_to_descendant(user, child, target_descendant, copy_settings)

            root = await repositories.ensure_descendant("Day", target_day["id"])
            for item_id in top_ids:
                item = top_items.get(item_id)
                if item is None or sections.is_permanent_section(item):
                    continue
                if not _should_migrate(item, migration_settings):
                    continue
                await item_service.copy_to_descendant(user, item, root, copy_settings)
                root = await repositories.get_descendant(root.id)
                migrated += 1

        now = utc_now_iso()
        await repositories.update_day(source_day["id"], {"imported_to_day_id": target_day["id"], "imported_at": now})
        await repositories.update_day(target_day["id"], {"imported_from_day_id": source_day["id"], "imported_at": now})
    logger.info("Migrated %s items from %s to %s", migrated, source_day["date"], target_day["date"])
    return {"target_day": await repositories.get_day_by_id(target_day["id"]), "migrated_count": migrated}


async def import_latest(user: dict, target_date) -> dict:
    source_day = await find_latest_importable_day(user, target_date)
    await validate_import_conditions(user, source_day, target_date)
    return await migrate_day(user, source_day, target_date)


async def _collect_items(descendant: Descendant | None, result: dict, seen: set) -> None:
    if descendant is None or descendant.id in seen:
        return
    seen.add(descendant.id)
    item_ids = descendant.extract_active_item_ids() + descendant.extract_inactive_item_ids()
    items = await repositories.get_items(item_ids)
    child_descendants = await repositories.get_descendants_for("Item", list(items.keys()))
    for item_id in item_ids:
        item = items.get(item_id)
        if item is None:
            continue
        result["all_items"].append(item)
        child = child_descendants.get(item_id)
        if child is not None:
            result["item_descendant_map"][item_id] = child
            await _collect_items(child, result, seen)


async def fetch_items(day: dict) -> dict:
    descendant = await repositories.ensure_descendant("Day", day["id"])
    result = {"all_items": [], "item_descendant_map": {}}
    await _collect_items(descendant, result, set())

    active = await repositories.get_items(descendant.extract_active_item_ids())
    inactive = await repositories.get_items(descendant.extract_inactive_item_ids())
    active_lists = await repositories.fetch_records("List", descendant.extract_active_ids_by_type("List"))
    inactive_lists = await repositories.fetch_records("List", descendant.extract_inactive_ids_by_type("List"))
    result.update(
        active_items=[active[i] for i in descendant.extract_active_item_ids() if i in active],
        inactive_items=[inactive[i] for i in descendant.extract_inactive_item_ids() if i in inactive],
        active_lists=[active_lists[i] for i in descendant.extract_active_ids_by_type("List") if i in active_lists],
        inactive_lists=[
            inactive_lists[i] for i in descendant.extract_inactive_ids_by_type("List") if i in inactive_lists
        ],
    )
    result["all_lists"] = result["active_lists"] + result["inactive_lists"]
    return result


async def _owned_record(user: dict, record_type: str, record_id: str) -> dict | None:
    if record_type == "List":
        return await repositories.get_user_list(user["id"], record_id)
    if record_type == "Checklist":
        return await repositories.get_user_checklist(user["id"], record_id)
    if record_type == "Journal":
        return await repositories.get_user_journal(user["id"], record_id)
    if record_type == "Note":
        return await repositories.get_user_note(user["id"], record_id)
    return None


async def link_record(user: dict, day: dict, record_type: str, record_id: str) -> Descendant:
    if record_type not in LINKABLE_TYPES:
        raise ValueError(f"Cannot link {record_type} to a day")
    record = await _owned_record(user, record_type, record_id)
    if record is None:
        raise NotFoundError(f"{record_type} not found")
    descendant = await repositories.ensure_descendant("Day", day["id"])
    descendant.add_active_record(record_type, record_id)
    return await repositories.save_descendant(descendant)


async def unlink_record(day: dict, record_type: str, record_id: str) -> Descendant:
    descendant = await repositories.ensure_descendant("Day", day["id"])
    descendant.remove_record(record_type, record_id)
    return await repositories.save_descendant(descendant)
