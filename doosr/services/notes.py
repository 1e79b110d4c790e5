from __future__ import annotations

from doosr import repositories
from doosr.descendants import Descendant

PREVIEW_LENGTH = 100


def content_preview(content: str | None) -> str:
    if not content:
        return ""
    if len(content) > PREVIEW_LENGTH:
        return content[: PREVIEW_LENGTH - 2] + "..."
    return content


async def parent_contexts(note: dict) -> list[dict]:
    contexts = []
    for descendant in await repositories.list_containing_descendants("Note", note["id"]):
        records = await repositories.fetch_records(descendant.descendable_type, [descendant.descendable_id])
        owner = records.get(descendant.descendable_id)
        if owner is None:
            continue
        label = owner.get("title") or owner.get("date") or owner.get("name") or ""
        contexts.append({"type": descendant.descendable_type, "id": owner["id"], "label": label})
    return contexts


async def serialize(note: dict, with_contexts: bool = False) -> dict:
    payload = {
        "id": note["id"],
        "content": note["content"],
        "preview": content_preview(note["content"]),
        "created_at": note.get("created_at"),
        "updated_at": note.get("updated_at"),
    }
    if with_contexts:
        payload["parent_contexts"] = await parent_contexts(note)
        payload["linked_notes"] = [
            {"id": linked["id"], "preview": content_preview(linked["content"])}
            for linked in await repositories.list_linked_notes(note["id"])
        ]
    return payload


async def create_in(user: dict, content: str, parent: Descendant | None = None) -> dict:
    note = await repositories.create_note(user["id"], content)
    if parent is not None:
        parent.add_active_record("Note", note["id"])
        await repositories.save_descendant(parent)
    return note


async def attach(note: dict, parent: Descendant) -> Descendant:
    parent.add_active_record("Note", note["id"])
    return await repositories.save_descendant(parent)


async def delete(note: dict) -> None:
    for descendant in await repositories.list_containing_descendants("Note", note["id"]):
        descendant.remove_record("Note", note["id"])
        await repositories.save_descendant(descendant)
    await repositories.delete_note(note["id"])
