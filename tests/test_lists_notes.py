from doosr import repositories
from doosr.services import items, lists, notes
from doosr.services.item_tree import tree_to_dict


async def test_adding_duplicate_reusable_item_reuses_it(user):
    lst = await repositories.create_list(user["id"], {"title": "Pantry"})

    created = await lists.add_item(user, lst, {"title": "Olive oil"})
    again = await lists.add_item(user, lst, {"title": "  olive   OIL "})

    assert created["status"] == "created"
    assert again["status"] == "already_active"
    assert again["item"]["id"] == created["item"]["id"]

    await items.set_done(user, created["item"])
    reactivated = await lists.add_item(user, lst, {"title": "Olive oil"})
    assert reactivated["status"] == "reactivated"
    assert reactivated["item"]["state"] == "todo"


async def test_duplicates_are_found_inside_sections(user):
    lst = await repositories.create_list(user["id"], {"title": "Hardware"})
    section = (await lists.add_item(user, lst, {"title": "Tools", "item_type": "section"}))["item"]
    section_desc = await repositories.ensure_descendant("Item", section["id"])
    nested = (await lists.add_item(user, lst, {"title": "Hammer"}, parent=section_desc))["item"]

    assert (await lists.find_duplicate_item(user["id"], lst, "hammer"))["id"] == nested["id"]
    tree = tree_to_dict(await lists.list_tree(lst))
    assert tree["children"][0]["children"][0]["label"] == "Hammer"


async def test_list_items_must_be_reusable_or_sections(user):
    lst = await repositories.create_list(user["id"], {"title": "Chores"})
    try:
        await lists.add_item(user, lst, {"title": "Mop", "item_type": "completable"})
    except ValueError as exc:
        assert "reusable" in str(exc)
    else:
        raise AssertionError("completable items should be refused")


async def test_public_and_editable_flags():
    assert lists.is_public({"list_type": "public_list"})
    assert not lists.is_public({"list_type": "shared_list"})
    assert lists.is_editable({"visibility": "editable"})


async def test_delete_list_unlinks_it(user):
    lst = await repositories.create_list(user["id"], {"title": "Temporary"})
    day = await repositories.create_day(user["id"], "2025-06-01")
    root = await repositories.ensure_descendant("Day", day["id"])
    root.add_active_record("List", lst["id"])
    await repositories.save_descendant(root)

    await lists.delete_list(lst)

    assert (await repositories.get_descendant(root.id)).active_items == []
    assert await repositories.get_list(lst["id"]) is None


def test_content_preview():
    assert notes.content_preview("short") == "short"
    assert notes.content_preview(None) == ""
    preview = notes.content_preview("a" * 101)
    assert preview == "a" * 98 + "..."


async def test_note_contexts_and_links(user):
    day = await repositories.create_day(user["id"], "2025-06-02")
    root = await repositories.ensure_descendant("Day", day["id"])
    note = await notes.create_in(user, "Remember the keys", parent=root)
    other = await repositories.create_note(user["id"], "Spare set at the office")
    await repositories.link_notes(note["id"], other["id"])

    payload = await notes.serialize(note, with_contexts=True)

    assert payload["parent_contexts"] == [{"type": "Day", "id": day["id"], "label": "2025-06-02"}]
    assert payload["linked_notes"][0]["id"] == other["id"]

    await notes.delete(note)
    assert (await repositories.get_descendant(root.id)).active_items == []
    assert await repositories.list_linked_notes(note["id"]) == []
