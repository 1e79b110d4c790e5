from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder

from doosr import repositories
from doosr.auth import require_user
from doosr.schemas import ChecklistLink, DayImport, DayLink, DayOpen
from doosr.services import checklists as checklist_service
from doosr.services import days as day_service
from doosr.services import fixed_calendar
from doosr.services import items as item_service
from doosr.services.item_tree import build_tree, tree_to_dict

router = APIRouter()


async def _get_day(user: dict, day_id: str) -> dict:
    day = await repositories.get_day(user["id"], day_id)
    if not day:
        raise HTTPException(status_code=404, detail="Day not found")
    return day


async def _day_payload(day: dict) -> dict:
    descendant = await repositories.ensure_descendant("Day", day["id"])
    tree = await build_tree(descendant, root_label="day")
    return {
        "day": jsonable_encoder(day),
        "fixed_calendar": jsonable_encoder(fixed_calendar.describe(date.fromisoformat(day["date"]))),
        "tree": tree_to_dict(tree),
    }


@router.get("/v1/days")
async def list_days(limit: int = Query(30, ge=1, le=365), user: dict = Depends(require_user)):
    return {"items": jsonable_encoder(await repositories.list_days(user["id"], limit=limit))}


@router.post("/v1/days/open")
async def open_day(payload: DayOpen, user: dict = Depends(require_user)):
    result = await day_service.open_day(user, payload.date)
    return {**(await _day_payload(result["day"])), "created": result["created"], "reopened": result["reopened"]}


@router.get("/v1/days/by-date/{day_date}")
async def get_day_by_date(day_date: date, user: dict = Depends(require_user)):
    day = await repositories.get_day_by_date(user["id"], day_date.isoformat())
    if not day:
        raise HTTPException(status_code=404, detail="Day not found")
    return await _day_payload(day)


@router.get("/v1/days/importable")
async def importable_day(target_date: date = Query(...), user: dict = Depends(require_user)):
    source = await day_service.find_latest_importable_day(user, target_date)
    previous = await day_service.find_previous_day(user, target_date)
    return {"source_day": jsonable_encoder(source), "previous_day": jsonable_encoder(previous)}


@router.post("/v1/days/import")
async def import_day(payload: DayImport, user: dict = Depends(require_user)):
    if payload.source_day_id:
        source = await _get_day(user, payload.source_day_id)
        await day_service.validate_import_conditions(user, source, payload.target_date)
        result = await day_service.migrate_day(user, source, payload.target_date)
    else:
        result = await day_service.import_latest(user, payload.target_date)
    return {
        **(await _day_payload(result["target_day"])),
        "migrated_count": result["migrated_count"],
    }


@router.get("/v1/days/{day_id}")
async def get_day(day_id: str, user: dict = Depends(require_user)):
    return await _day_payload(await _get_day(user, day_id))


@router.get("/v1/days/{day_id}/items")
async def day_items(day_id: str, user: dict = Depends(require_user)):
    result = await day_service.fetch_items(await _get_day(user, day_id))
    result["item_descendant_map"] = {
        item_id: descendant.to_dict() for item_id, descendant in result["item_descendant_map"].items()
    }
    return jsonable_encoder(result)


@router.post("/v1/days/{day_id}/close")
async def close_day(day_id: str, user: dict = Depends(require_user)):
    return jsonable_encoder(await day_service.close_day(await _get_day(user, day_id)))


@router.post("/v1/days/{day_id}/reopen")
async def reopen_day(day_id: str, user: dict = Depends(require_user)):
    return jsonable_encoder(await day_service.reopen_day(await _get_day(user, day_id)))


@router.post("/v1/days/{day_id}/links")
async def link_record(day_id: str, payload: DayLink, user: dict = Depends(require_user)):
    day = await _get_day(user, day_id)
    descendant = await day_service.link_record(user, day, payload.record_type, payload.record_id)
    return descendant.to_dict()


@router.delete("/v1/days/{day_id}/links/{record_type}/{record_id}")
async def unlink_record(day_id: str, record_type: str, record_id: str, user: dict = Depends(require_user)):
    day = await _get_day(user, day_id)
    descendant = await day_service.unlink_record(day, record_type, record_id)
    return descendant.to_dict()


@router.post("/v1/days/{day_id}/checklists")
async def add_checklist(day_id: str, payload: ChecklistLink, user: dict = Depends(require_user)):
    day = await _get_day(user, day_id)
    template = await repositories.get_user_checklist(user["id"], payload.template_id)
    if not template:
        raise HTTPException(status_code=404, detail="Checklist template not found")
    checklist = await checklist_service.instantiate_for_day(user, template, day)
    return jsonable_encoder(checklist)


@router.post("/v1/days/{day_id}/unique-titles")
async def ensure_unique_titles(day_id: str, user: dict = Depends(require_user)):
    day = await _get_day(user, day_id)
    descendant = await repositories.ensure_descendant("Day", day["id"])
    return await item_service.ensure_unique_titles(descendant)
