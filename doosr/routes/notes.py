from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from doosr import repositories
from doosr.auth import require_user
from doosr.schemas import NoteCreate, NoteLink, NotePatch
from doosr.services import notes as note_service
from doosr.services.ownership import owned_descendant

router = APIRouter()


async def _get_note(user: dict, note_id: str) -> dict:
    note = await repositories.get_user_note(user["id"], note_id)
    if not note:
        raise HTTPException(status_code=404, detail="Note not found")
    return note


@router.get("/v1/notes")
async def list_notes(user: dict = Depends(require_user)):
    notes = await repositories.list_notes(user["id"])
    return {"items": [await note_service.serialize(note) for note in notes]}


@router.post("/v1/notes")
async def create_note(payload: NoteCreate, user: dict = Depends(require_user)):
    parent = None
    if payload.parent_type and payload.parent_id:
        parent = await owned_descendant(user, payload.parent_type, payload.parent_id)
    note = await note_service.create_in(user, payload.content, parent=parent)
    return await note_service.serialize(note, with_contexts=True)


@router.get("/v1/notes/{note_id}")
async def get_note(note_id: str, user: dict = Depends(require_user)):
    return await note_service.serialize(await _get_note(user, note_id), with_contexts=True)


@router.patch("/v1/notes/{note_id}")
async def patch_note(note_id: str, payload: NotePatch, user: dict = Depends(require_user)):
    await _get_note(user, note_id)
    await repositories.update_note(note_id, payload.content)
    return await note_service.serialize(await _get_note(user, note_id), with_contexts=True)


@router.delete("/v1/notes/{note_id}")
async def delete_note(note_id: str, user: dict = Depends(require_user)):
    await note_service.delete(await _get_note(user, note_id))
    return {"ok": True}


@router.post("/v1/notes/{note_id}/links")
async def link_note(note_id: str, payload: NoteLink, user: dict = Depends(require_user)):
    await _get_note(user, note_id)
    await _get_note(user, payload.linked_note_id)
    await repositories.link_notes(note_id, payload.linked_note_id)
    return await note_service.serialize(await _get_note(user, note_id), with_contexts=True)


@router.delete("/v1/notes/{note_id}/links/{linked_note_id}")
async def unlink_note(note_id: str, linked_note_id: str, user: dict = Depends(require_user)):
    await _get_note(user, note_id)
    await repositories.unlink_notes(note_id, linked_note_id)
    return {"ok": True}
