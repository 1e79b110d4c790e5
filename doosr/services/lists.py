from __future__ import annotations

import logging

from doosr import repositories
from doosr.descendants import Descendant
from doosr.services import items as item_service
from doosr.services.item_tree import Node, build_tree

logger = logging.getLogger(__name__)

LIST_ITEM_TYPES = {"reusable", "section"}


async def _collect_item_ids(descendant: Descendant | None, seen: set) -> list[str]:
    if descendant is None or descendant.id in seen:
        return []
    seen.add(descendant.id)
    ids = descendant.extract_active_item_ids() + descendant.extract_inactive_item_ids()
    found = list(ids)
    children = await repositories.get_descendants_for("Item", ids)
    for item_id in ids:
        found.extend(await _collect_item_ids(children.get(item_id), seen))
    return found


async def find_duplicate_item(owner_id: str, lst: dict, title: str) -> dict | None:
    """Reusable item in ``lst`` (at any depth) whose title matches case-insensitively."""
    descendant = await repositories.ensure_descendant("List", lst["id"])
    item_ids = await _collect_item_ids(descendant, set())
    items = await repositories.get_items(item_ids)
    wanted = " ".join(str(title or "").split()).lower()
    for item_id in item_ids:
        item = items.get(item_id)
        if item and item["user_id"] == owner_id and item["item_type"] == "reusable" and item["title"].lower() == wanted:
            return item
    return None


async def add_item(owner: dict, lst: dict, payload: dict, parent: Descendant | None = None) -> dict:
    """Add a reusable or section item; a duplicate reusable title re-activates the existing one."""
    item_type = payload.get("item_type") or "reusable"
    if item_type not in LIST_ITEM_TYPES:
        raise ValueError("Lists can only contain 'reusable' or 'section' items")

    if item_type == "reusable":
        existing = await find_duplicate_item(owner["id"], lst, payload.get("title"))
        if existing:
            container = await item_service.containing_descendant(existing["id"])
            if container and container.active_record("Item", existing["id"]):
                return {"item": existing, "status": "already_active"}
            await item_service.set_todo(owner, existing)
            return {"item": await repositories.get_item(existing["id"]), "status": "reactivated"}

    if parent is None:
        parent = await repositories.ensure_descendant("List", lst["id"])
    item = await item_service.create_item(owner, {**payload, "item_type": item_type, "state": "todo"}, parent=parent)
    return {"item": item, "status": "created"}


async def list_tree(lst: dict) -> Node:
    descendant = await repositories.ensure_descendant("List", lst["id"])
    return await build_tree(descendant, root_label="list")


def is_public(lst: dict) -> bool:
    return lst.get("list_type") == "public_list"


def is_editable(lst: dict) -> bool:
    return lst.get("visibility") == "editable"


async def delete_list(lst: dict) -> None:
    for descendant in await repositories.list_containing_descendants("List", lst["id"]):
        descendant.remove_record("List", lst["id"])
        await repositories.save_descendant(descendant)
    await repositories.delete_list(lst["id"])
    logger.info("Deleted list %s", lst["id"])
