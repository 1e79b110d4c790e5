from __future__ import annotations

import copy

from doosr import repositories


async def instantiate_for_day(user: dict, template: dict, day: dict) -> dict:
    """Create a checklist from ``template`` and put it first on the day; one instance per template per day."""
    if template.get("kind") != "template":
        raise ValueError("Only checklist templates can be added to a day")
    descendant = await repositories.ensure_descendant("Day", day["id"])
    linked_ids = descendant.extract_active_ids_by_type("Checklist") + descendant.extract_inactive_ids_by_type("Checklist")
    linked = await repositories.fetch_records("Checklist", linked_ids)
    if any(row.get("template_id") == template["id"] for row in linked.values()):
        raise ValueError("This checklist is already linked to this day")

    checklist = await repositories.create_checklist(
        user["id"],
        {
            "kind": "checklist",
            "name": template["name"],
            "description": template["description"],
            "flow": template["flow"],
            "items": copy.deepcopy(template.get("items") or []),
            "metadata": {},
            "template_id": template["id"],
        },
    )
    descendant.prepend_active_record("Checklist", checklist["id"])
    await repositories.save_descendant(descendant)
    return checklist


async def delete(checklist: dict) -> None:
    for descendant in await repositories.list_containing_descendants("Checklist", checklist["id"]):
        descendant.remove_record("Checklist", checklist["id"])
        await repositories.save_descendant(descendant)
    await repositories.delete_checklist(checklist["id"])
