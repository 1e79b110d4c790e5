from datetime import timedelta

import pytest

from doosr import repositories
from doosr.clock import today
from doosr.services import days, items, sections


async def _day_root(user, offset=0):
    day = await sections.ensure_day(user, today() + timedelta(days=offset))
    return day, await repositories.ensure_descendant("Day", day["id"])


async def _add(user, parent, title, **payload):
    return await items.create_item(user, {"title": title, **payload}, parent=parent, unfurl=False)


async def test_done_moves_item_to_inactive_and_todo_restores_it(user):
    _, root = await _day_root(user)
    item = await _add(user, root, "Write report")

    assert await items.set_done(user, item) is True
    root = await repositories.get_descendant(root.id)
    assert root.extract_inactive_item_ids() == [item["id"]]
    stored = await repositories.get_item(item["id"])
    assert stored["state"] == "done"
    assert stored["done_at"]

    assert await items.set_todo(user, stored) is True
    root = await repositories.get_descendant(root.id)
    assert root.extract_active_item_ids() == [item["id"]]
    assert (await repositories.get_item(item["id"]))["done_at"] is None


async def test_sections_cannot_change_state(user):
    _, root = await _day_root(user)
    section = await _add(user, root, "Errands", item_type="section")

    assert await items.set_done(user, section) is False
    assert (await repositories.get_item(section["id"]))["state"] == "todo"
    with pytest.raises(ValueError):
        await repositories.create_item(user["id"], {"title": "Bad", "item_type": "trackable", "state": "done"})


async def test_set_state_rejects_unknown_state_and_past_deferral(user):
    _, root = await _day_root(user)
    item = await _add(user, root, "Call mum")
    with pytest.raises(ValueError):
        await items.set_state(user, item, "paused")
    with pytest.raises(ValueError):
        await items.set_state(user, item, "deferred", deferred_to=today() - timedelta(days=1))


async def test_completing_recurring_item_schedules_next_occurrence(user):
    _, root = await _day_root(user)
    item = await _add(user, root, "Water plants", recurrence_rule={"frequency": "daily"})

    await items.set_done(user, item)

    stored = await repositories.get_item(item["id"])
    assert stored["recurring_next_item_id"]
    tomorrow = await repositories.get_day_by_date(user["id"], (today() + timedelta(days=1)).isoformat())
    assert tomorrow is not None
    tomorrow_root = await repositories.get_descendant_for("Day", tomorrow["id"])
    assert stored["recurring_next_item_id"] in tomorrow_root.extract_active_item_ids()

    await items.set_todo(user, stored)
    assert await repositories.get_item(stored["recurring_next_item_id"]) is None
    assert (await repositories.get_item(item["id"]))["recurring_next_item_id"] is None


async def test_defer_copies_item_with_children_to_target_day(user):
    _, root = await _day_root(user)
    parent = await _add(user, root, "Plan trip", item_type="section")
    parent_desc = await repositories.ensure_descendant("Item", parent["id"])
    child = await _add(user, parent_desc, "Book hotel")
    parent_desc = await repositories.get_descendant(parent_desc.id)
    done_child = await _add(user, parent_desc, "Pick dates")
    await items.set_done(user, done_child)

    result = await items.defer(user, await repositories.get_item(parent["id"]), today() + timedelta(days=2))

    assert result["nested_items_count"] == 1
    new_item = result["new_item"]
    assert new_item["source_item_id"] == parent["id"]
    target_root = await repositories.get_descendant_for("Day", result["day"]["id"])
    assert new_item["id"] in target_root.extract_active_item_ids()
    copied_children = await repositories.get_descendant_for("Item", new_item["id"])
    copied = await repositories.get_items(copied_children.extract_active_item_ids())
    assert [entry["title"] for entry in copied.values()] == ["Book hotel"]
    assert child["id"] not in copied


async def test_defer_and_undefer_completable_item(user):
    _, root = await _day_root(user)
    item = await _add(user, root, "Dentist")

    result = await items.defer(user, item, today() + timedelta(days=1))
    stored = await repositories.get_item(item["id"])
    assert stored["state"] == "deferred"
    assert (await repositories.get_descendant(root.id)).extract_inactive_item_ids() == [item["id"]]

    restored = await items.undefer(user, stored)

    assert restored["state"] == "todo"
    assert restored["deferred_to"] is None
    assert await repositories.get_item(result["new_item"]["id"]) is None
    assert (await repositories.get_descendant(root.id)).extract_active_item_ids() == [item["id"]]


async def test_failed_defer_is_rolled_back(user, monkeypatch):
    _, root = await _day_root(user)
    item = await _add(user, root, "Renew passport")

    async def fail(*args, **kwargs):
        raise RuntimeError("connection lost")

    monkeypatch.setattr(items, "_move_in_container", fail)
    with pytest.raises(RuntimeError):
        await items.defer(user, item, today() + timedelta(days=4))

    assert (await repositories.get_item(item["id"]))["state"] == "todo"
    assert await repositories.list_items_copied_from(item["id"]) == []
    assert await repositories.get_day_by_date(user["id"], (today() + timedelta(days=4)).isoformat()) is None
    assert (await repositories.get_descendant(root.id)).extract_active_item_ids() == [item["id"]]


async def test_defer_requires_todo_and_undefer_requires_deferral(user):
    _, root = await _day_root(user)
    item = await _add(user, root, "Already done")
    await items.set_done(user, item)
    with pytest.raises(ValueError, match="Only items in 'todo' state"):
        await items.defer(user, await repositories.get_item(item["id"]), today() + timedelta(days=1))

    fresh = await _add(user, root, "Fresh")
    with pytest.raises(ValueError, match="Only deferred items"):
        await items.undefer(user, fresh)


async def test_defer_from_permanent_section_lands_in_matching_section(user, monkeypatch):
    monkeypatch.setenv("DEFAULT_PERMANENT_SECTIONS", "Work")
    from doosr.settings import reset_settings

    reset_settings()
    day, root = await _day_root(user)
    section = await sections.find_section_in(root, "work")
    assert section is not None
    section_desc = await repositories.ensure_descendant("Item", section["id"])
    item = await _add(user, section_desc, "Review PR")

    result = await items.defer(user, item, today() + timedelta(days=3))

    target_root = await repositories.get_descendant_for("Day", result["day"]["id"])
    target_section = await sections.find_section_in(target_root, "Work")
    target_section_desc = await repositories.get_descendant_for("Item", target_section["id"])
    assert result["new_item"]["id"] in target_section_desc.extract_active_item_ids()
    assert result["new_item"]["id"] not in target_root.extract_active_item_ids()


async def test_copy_links_item_notes(user):
    _, root = await _day_root(user)
    parent = await _add(user, root, "Project", item_type="section")
    parent_desc = await repositories.ensure_descendant("Item", parent["id"])
    await _add(user, parent_desc, "Task")
    note = await repositories.create_note(user["id"], "context")
    parent_desc = await repositories.get_descendant(parent_desc.id)
    parent_desc.add_active_record("Note", note["id"])
    await repositories.save_descendant(parent_desc)

    _, other_root = await _day_root(user, offset=1)
    copy = await items.copy_to_descendant(user, await repositories.get_item(parent["id"]), other_root)

    copy_desc = await repositories.get_descendant_for("Item", copy["id"])
    assert copy_desc.extract_active_ids_by_type("Note") == [note["id"]]


async def test_ensure_unique_titles_keeps_first_and_other_records(user):
    _, root = await _day_root(user)
    first = await _add(user, root, "Gym")
    root = await repositories.get_descendant(root.id)
    await _add(user, root, "gym")
    root = await repositories.get_descendant(root.id)
    note = await repositories.create_note(user["id"], "note")
    root.add_active_record("Note", note["id"])

    result = await items.ensure_unique_titles(root)

    assert result["removed_count"] == 1
    assert result["duplicates"][0]["title"] == "gym"
    assert root.active_items == [{"Item": first["id"]}, {"Note": note["id"]}]


async def test_reparent_and_move_within(user):
    _, root = await _day_root(user)
    a = await _add(user, root, "A")
    root = await repositories.get_descendant(root.id)
    b = await _add(user, root, "B")
    section = await _add(user, await repositories.get_descendant(root.id), "Box", item_type="section")
    section_desc = await repositories.ensure_descendant("Item", section["id"])

    await items.reparent("Item", a, section_desc)

    root = await repositories.get_descendant(root.id)
    assert a["id"] not in root.extract_active_item_ids()
    assert (await repositories.get_descendant(section_desc.id)).extract_active_item_ids() == [a["id"]]
    with pytest.raises(ValueError):
        await items.reparent("Item", section, section_desc)

    assert await items.move_within(root, "Item", section["id"], "up") is True
    root = await repositories.get_descendant(root.id)
    assert root.extract_active_item_ids() == [section["id"], b["id"]]
    assert await items.move_within(root, "Item", section["id"], "up") is False


async def test_fetch_items_walks_nested_tree(user):
    day, root = await _day_root(user)
    section = await _add(user, root, "Home", item_type="section")
    section_desc = await repositories.ensure_descendant("Item", section["id"])
    nested = await _add(user, section_desc, "Vacuum")

    result = await days.fetch_items(day)

    assert {item["id"] for item in result["all_items"]} == {section["id"], nested["id"]}
    assert result["item_descendant_map"][section["id"]].id == section_desc.id
    assert [item["id"] for item in result["active_items"]] == [section["id"]]
