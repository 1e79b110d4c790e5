from __future__ import annotations

import logging
from datetime import date

from doosr import repositories
from doosr.clock import parse_date, today, utc_now_iso
from doosr.descendants import Descendant
from doosr.services import recurrence, sections, url_unfurler

logger = logging.getLogger(__name__)

COMPLETABLE_TYPES = {"completable", "reusable"}
INACTIVE_STATES = {"done", "dropped", "deferred"}


def can_be_completed(item: dict) -> bool:
    return item.get("item_type") in COMPLETABLE_TYPES


async def containing_descendant(item_id: str) -> Descendant | None:
    return await repositories.find_containing_descendant("Item", item_id)


async def _move_in_container(item_id: str, to_active: bool) -> None:
    descendant = await containing_descendant(item_id)
    if descendant is None:
        return
    moved = descendant.activate_record("Item", item_id) if to_active else descendant.deactivate_record("Item", item_id)
    if moved:
        await repositories.save_descendant(descendant)


async def _detach(record_type: str, record_id: str) -> None:
    for descendant in await repositories.list_containing_descendants(record_type, record_id):
        descendant.remove_record(record_type, record_id)
        await repositories.save_descendant(descendant)


async def create_item(user: dict, payload: dict, parent: Descendant | None = None, unfurl: bool = True) -> dict:
    payload = dict(payload)
    if "recurrence_rule" in payload:
        rule = recurrence.validate_rule(payload["recurrence_rule"])
        payload["recurrence_rule"] = rule
    item = await repositories.create_item(user["id"], payload)
    if parent is not None:
        if item["state"] == "todo":
            parent.add_active_item(item["id"])
        else:
            parent.add_inactive_item(item["id"])
        await repositories.save_descendant(parent)
    if unfurl:
        item = await url_unfurler.unfurl_item(item)
    return item


async def update_item(item: dict, patch: dict) -> dict:
    patch = {key: value for key, value in patch.items() if key in {"title", "item_type", "extra_data", "recurrence_rule"}}
    if "recurrence_rule" in patch:
        patch["recurrence_rule"] = recurrence.validate_rule(patch["recurrence_rule"])
    item_type = patch.get("item_type", item["item_type"])
    if item_type in {"section", "trackable"} and item["state"] != "todo":
        raise ValueError(f"{item_type} items can only be in 'todo' state")
    updated = await repositories.update_item(item["id"], patch)
    if item_type in {"section", "reusable"}:
        await repositories.ensure_descendant("Item", item["id"])
    return updated


async def delete_item_tree(item: dict) -> None:
    descendant = await repositories.get_descendant_for("Item", item["id"])
    if descendant is not None:
        child_ids = descendant.extract_active_item_ids() + descendant.extract_inactive_item_ids()
        children = await repositories.get_items(child_ids)
        for child_id in child_ids:
            if child_id in children:
                await delete_item_tree(children[child_id])
    await repositories.delete_item(item["id"])


async def delete_item(item: dict) -> None:
    await _detach("Item", item["id"])
    await repositories.delete_item(item["id"])


async def _delete_next_recurring_item(item: dict) -> None:
    next_item = await repositories.get_item(item["recurring_next_item_id"])
    if next_item:
        await _detach("Item", next_item["id"])
        await repositories.delete_item(next_item["id"])
        logger.debug("Deleted next recurring item %s for item %s", next_item["id"], item["id"])
    await repositories.update_item(item["id"], {"recurring_next_item_id": None})


async def set_todo(user: dict, item: dict) -> bool:
    if not can_be_completed(item):
        return False
    if item.get("recurring_next_item_id"):
        await _delete_next_recurring_item(item)
    await _move_in_container(item["id"], to_active=True)
    await repositories.update_item(
        item["id"],
        {"state": "todo", "done_at": None, "dropped_at": None, "deferred_at": None, "deferred_to": None},
    )
    return True


async def set_done(user: dict, item: dict) -> bool:
    if not can_be_completed(item):
        return False
    await _move_in_container(item["id"], to_active=False)
    await repositories.update_item(item["id"], {"state": "done", "done_at": utc_now_iso()})
    if item.get("recurrence_rule") and not item.get("recurring_next_item_id"):
        try:
            await schedule_next_occurrence(user, item)
        except Exception:
            logger.exception("Failed to schedule next recurrence for item %s", item["id"])
    return True


async def set_dropped(user: dict, item: dict) -> bool:
    if not can_be_completed(item):
        return False
    await _move_in_container(item["id"], to_active=False)
    await repositories.update_item(item["id"], {"state": "dropped", "dropped_at": utc_now_iso()})
    return True


def _validate_future(target: date) -> None:
    if target < today():
        raise ValueError("Deferred date must be today or in the future")


async def set_deferred(user: dict, item: dict, deferred_to) -> bool:
    if not can_be_completed(item):
        return False
    target = parse_date(deferred_to)
    _validate_future(target)
    await _move_in_container(item["id"], to_active=False)
    await repositories.update_item(
        item["id"],
        {"state": "deferred", "deferred_at": utc_now_iso(), "deferred_to": target},
    )
    return True


async def set_state(user: dict, item: dict, state: str, deferred_to=None) -> bool:
    if state == "todo":
        return await set_todo(user, item)
    if state == "done":
        return await set_done(user, item)
    if state == "dropped":
        return await set_dropped(user, item)
    if state == "deferred":
        if not deferred_to:
            raise ValueError("deferred_to is required")
        return await set_deferred(user, item, deferred_to)
    raise ValueError(f"Invalid item state: {state}")


async def find_permanent_section(item: dict) -> dict | None:
    """Nearest permanent section above ``item``; None once a day or list root is reached."""
    descendant = await containing_descendant(item["id"])
    seen = set()
    while descendant is not None and descendant.id not in seen:
        seen.add(descendant.id)
        if descendant.descendable_type != "Item":
            return None
        owner = await repositories.get_item(descendant.descendable_id)
        if owner is None:
            return None
        if sections.is_permanent_section(owner):
            return owner
        descendant = await containing_descendant(owner["id"])
    return None


async def section_has_active_items_in_tree(section: dict) -> bool:
    descendant = await repositories.get_descendant_for("Item", section["id"])
    if descendant is None:
        return False
    child_ids = descendant.extract_active_item_ids()
    if not child_ids:
        return False
    children = list((await repositories.get_items(child_ids)).values())
    if any(child["item_type"] != "section" and child["state"] == "todo" for child in children):
        return True
    for child in children:
        if child["item_type"] == "section" and await section_has_active_items_in_tree(child):
            return True
    return False


async def _should_copy_child(item: dict, copy_settings: dict) -> bool:
    if sections.is_permanent_section(item):
        return False
    if item["item_type"] != "section":
        return item["state"] == "todo"
    descendant = await repositories.get_descendant_for("Item", item["id"])
    if descendant is None or not descendant.extract_active_item_ids():
        return True
    if copy_settings.get("sections_with_no_active_items") is not False:
        return True
    return await section_has_active_items_in_tree(item)


async def copy_to_descendant(
    user: dict, source: dict, target: Descendant, copy_settings: dict | None = None
) -> dict:
    """Copy ``source`` and its migratable active children under ``target``."""
    if copy_settings is None:
        copy_settings = sections.migration_settings_for(user)["items"]
    extra_data = dict(source.get("extra_data") or {})
    extra_data.pop("permanent_section", None)
    new_item = await repositories.create_item(
        user["id"],
        {
            "title": source["title"],
            "item_type": source["item_type"],
            "state": source["state"],
            "extra_data": extra_data,
            "source_item_id": source["id"],
            "deferred_at": source.get("deferred_at"),
            "deferred_to": source.get("deferred_to"),
            "recurrence_rule": source.get("recurrence_rule"),
        },
    )
    if source["state"] == "todo":
        target.add_active_item(new_item["id"])
    else:
        target.add_inactive_item(new_item["id"])
    await repositories.save_descendant(target)

    await _copy_children(user, source, new_item, copy_settings)
    return new_item


async def _copy_children(user: dict, source: dict, new_item: dict, copy_settings: dict) -> None:
    source_descendant = await repositories.get_descendant_for("Item", source["id"])
    if source_descendant is None:
        return

    if source["item_type"] == "section" and not await section_has_active_items_in_tree(source):
        if copy_settings.get("sections_with_no_active_items") is not False:
            await repositories.ensure_descendant("Item", new_item["id"])
        return

    child_ids = source_descendant.extract_active_item_ids()
    children = await repositories.get_items(child_ids)
    to_copy = []
    for child_id in child_ids:
        child = children.get(child_id)
        if child and await _should_copy_child(child, copy_settings):
            to_copy.append(child)
    if not to_copy:
        return

    new_descendant = await repositories.ensure_descendant("Item", new_item["id"])
    for child in to_copy:
        await copy_to_descendant(user, child, new_descendant, copy_settings)

    if copy_settings.get("notes") is not False:
        note_ids = source_descendant.extract_active_ids_by_type("Note")
        if note_ids:
            new_descendant = await repositories.get_descendant(new_descendant.id)
            for note_id in note_ids:
                new_descendant.add_active_record("Note", note_id)
            await repositories.save_descendant(new_descendant)


async def count_nested_todo_items(item: dict) -> int:
    descendant = await repositories.get_descendant_for("Item", item["id"])
    if descendant is None:
        return 0
    child_ids = descendant.extract_active_item_ids()
    children = await repositories.get_items(child_ids)
    count = 0
    for child_id in child_ids:
        child = children.get(child_id)
        if child is None:
            continue
        if child["state"] == "todo":
            count += 1
        count += await count_nested_todo_items(child)
    return count


async def _target_descendant_for(user: dict, item: dict, day: dict) -> Descendant:
    section = await find_permanent_section(item)
    if section is not None:
        return await sections.matching_section_descendant(user, day, section["title"])
    return await repositories.ensure_descendant("Day", day["id"])


async def defer(user: dict, item: dict, target_date) -> dict:
    if item["state"] != "todo":
        raise ValueError(f"Only items in 'todo' state can be deferred. Current state: {item['state']}")
    target = parse_date(target_date)
    _validate_future(target)

    async with repositories.transaction():
        nested_count = await count_nested_todo_items(item)
        day = await sections.ensure_day(user, target)
        target_descendant = await _target_descendant_for(user, item, day)
        new_item = await copy_to_descendant(
            user, item, target_descendant, sections.migration_settings_for(user)["items"]
        )

        patch = {"deferred_at": utc_now_iso(), "deferred_to": target}
        if item["item_type"] != "section":
            patch["state"] = "deferred"
        await repositories.update_item(item["id"], patch)
        await _move_in_container(item["id"], to_active=False)
    return {"new_item": new_item, "nested_items_count": nested_count, "day": day}


async def undefer(user: dict, item: dict) -> dict:
    deferred = item["state"] == "deferred" or (item.get("deferred_at") and item.get("deferred_to"))
    if not deferred:
        raise ValueError("Only deferred items can be undeferred. This item has not been deferred.")

    async with repositories.transaction():
        copies = await repositories.list_items_copied_from(item["id"])
        if len(copies) > 1:
            logger.error("Multiple deferred copies found for item %s: %s", item["id"], [c["id"] for c in copies])
            raise ValueError("Multiple deferred copies found")
        if copies:
            await _detach("Item", copies[0]["id"])
            await delete_item_tree(copies[0])

        patch = {"deferred_at": None, "deferred_to": None}
        if item["item_type"] != "section":
            patch["state"] = "todo"
        updated = await repositories.update_item(item["id"], patch)
        await _move_in_container(item["id"], to_active=True)
    return updated


async def schedule_next_occurrence(user: dict, item: dict) -> dict:
    if not item.get("recurrence_rule"):
        raise ValueError("Item does not have a recurrence rule")
    next_date = recurrence.next_occurrence(item["recurrence_rule"], today())
    if next_date is None:
        raise ValueError("Failed to calculate next occurrence date")

    day = await sections.ensure_day(user, next_date)
    target_descendant = await _target_descendant_for(user, item, day)
    new_item = await repositories.create_item(
        user["id"],
        {
            "title": item["title"],
            "item_type": item["item_type"],
            "state": "todo",
            "recurrence_rule": item["recurrence_rule"],
            "extra_data": item.get("extra_data") or {},
        },
    )
    target_descendant.add_active_item(new_item["id"])
    await repositories.save_descendant(target_descendant)
    await repositories.update_item(item["id"], {"recurring_next_item_id": new_item["id"]})
    logger.info("Scheduled next occurrence of item %s on %s", item["id"], next_date.isoformat())
    return new_item


async def reparent(record_type: str, record: dict, target: Descendant) -> None:
    if target.descendable_type == record_type and target.descendable_id == record["id"]:
        raise ValueError("Cannot move a record into itself")
    if record_type == "Item":
        current = await containing_descendant(record["id"])
        containers = [current] if current else []
    else:
        containers = (await repositories.list_containing_descendants(record_type, record["id"]))[:1]
    for descendant in containers:
        if descendant.id == target.id:
            continue
        descendant.remove_record(record_type, record["id"])
        await repositories.save_descendant(descendant)

    target = await repositories.get_descendant(target.id) or target
    if record_type == "Item" and record.get("state") in {"done", "dropped"}:
        if not target.contains(record_type, record["id"]):
            target.add_inactive_record(record_type, record["id"])
    elif not target.contains(record_type, record["id"]):
        target.add_active_record(record_type, record["id"])
    await repositories.save_descendant(target)


async def ensure_unique_titles(descendant: Descendant) -> dict:
    item_ids = descendant.extract_active_item_ids()
    items = await repositories.get_items(item_ids)
    seen = set()
    duplicates = []
    kept = []
    for entry in descendant.active_items:
        item_id = entry.get("Item")
        item = items.get(item_id) if item_id else None
        if item is None:
            kept.append(entry)
            continue
        title = item["title"].lower()
        if title in seen:
            duplicates.append({"id": item_id, "title": item["title"]})
            continue
        seen.add(title)
        kept.append(entry)
    if duplicates:
        descendant.active_items = kept
        await repositories.save_descendant(descendant)
    return {"removed_count": len(duplicates), "duplicates": duplicates}


async def move_within(descendant: Descendant, record_type: str, record_id: str, direction: str) -> bool:
    entry = {record_type: record_id}
    entries = list(descendant.active_items)
    if entry not in entries:
        return False
    index = entries.index(entry)
    new_index = index - 1 if direction == "up" else index + 1
    if new_index < 0 or new_index >= len(entries):
        return False
    entries[index], entries[new_index] = entries[new_index], entries[index]
    descendant.reorder_active(entries)
    await repositories.save_descendant(descendant)
    return True
