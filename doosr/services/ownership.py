from __future__ import annotations

from doosr import repositories
from doosr.descendants import Descendant
from doosr.errors import NotFoundError

_OWNED_GETTERS = {
    "Day": repositories.get_day,
    "Item": repositories.get_user_item,
    "List": repositories.get_user_list,
    "Checklist": repositories.get_user_checklist,
    "Note": repositories.get_user_note,
    "Journal": repositories.get_user_journal,
    "JournalFragment": repositories.get_user_fragment,
}


async def get_owned(user: dict, record_type: str, record_id: str) -> dict:
    """Record of ``record_type`` owned by ``user``; raises NotFoundError otherwise."""
    getter = _OWNED_GETTERS.get(record_type)
    if getter is None:
        raise ValueError(f"Unknown record type: {record_type}")
    record = await getter(user["id"], record_id)
    if record is None:
        raise NotFoundError(f"{record_type} not found")
    return record


async def owned_descendant(user: dict, record_type: str, record_id: str) -> Descendant:
    if record_type not in {"Day", "Item", "List", "Journal"}:
        raise ValueError(f"{record_type} cannot hold children")
    await get_owned(user, record_type, record_id)
    return await repositories.ensure_descendant(record_type, record_id)
