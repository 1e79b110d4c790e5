from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder

from doosr import repositories
from doosr.auth import require_user
from doosr.schemas import ChecklistCreate, ChecklistPatch
from doosr.services import checklists as checklist_service

router = APIRouter()


async def _get_checklist(user: dict, checklist_id: str) -> dict:
    checklist = await repositories.get_user_checklist(user["id"], checklist_id)
    if not checklist:
        raise HTTPException(status_code=404, detail="Checklist not found")
    return checklist


@router.get("/v1/checklists")
async def list_checklists(kind: Optional[str] = Query(None), user: dict = Depends(require_user)):
    return {"items": jsonable_encoder(await repositories.list_checklists(user["id"], kind=kind))}


@router.post("/v1/checklists")
async def create_checklist(payload: ChecklistCreate, user: dict = Depends(require_user)):
    return jsonable_encoder(await repositories.create_checklist(user["id"], payload.model_dump()))


@router.get("/v1/checklists/{checklist_id}")
async def get_checklist(checklist_id: str, user: dict = Depends(require_user)):
    return jsonable_encoder(await _get_checklist(user, checklist_id))


@router.patch("/v1/checklists/{checklist_id}")
async def patch_checklist(checklist_id: str, payload: ChecklistPatch, user: dict = Depends(require_user)):
    await _get_checklist(user, checklist_id)
    updated = await repositories.update_checklist(checklist_id, payload.model_dump(exclude_unset=True))
    return jsonable_encoder(updated)


@router.delete("/v1/checklists/{checklist_id}")
async def delete_checklist(checklist_id: str, user: dict = Depends(require_user)):
    await checklist_service.delete(await _get_checklist(user, checklist_id))
    return {"ok": True}
