from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder

from doosr import repositories
from doosr.auth import require_user
from doosr.schemas import ItemCreate, ItemDefer, ItemPatch, ItemStateChange, MoveRecord, Reorder, Reparent
from doosr.services import items as item_service
from doosr.services import lists as list_service
from doosr.services.item_tree import build_tree, tree_to_dict
from doosr.services.ownership import get_owned, owned_descendant

router = APIRouter()


async def _get_item(user: dict, item_id: str) -> dict:
    item = await repositories.get_user_item(user["id"], item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    return item


@router.get("/v1/items/reusable")
async def search_reusable(q: str = Query(""), user: dict = Depends(require_user)):
    return {"items": jsonable_encoder(await repositories.search_reusable_items(user["id"], q))}


@router.post("/v1/items")
async def create_item(payload: ItemCreate, user: dict = Depends(require_user)):
    parent = None
    if payload.parent_type and payload.parent_id:
        parent = await owned_descendant(user, payload.parent_type, payload.parent_id)
    data = payload.model_dump(exclude={"parent_type", "parent_id"}, exclude_unset=True)
    item = await item_service.create_item(user, data, parent=parent)
    return jsonable_encoder(item)


@router.get("/v1/items/{item_id}")
async def get_item(item_id: str, user: dict = Depends(require_user)):
    item = await _get_item(user, item_id)
    descendant = await repositories.get_descendant_for("Item", item_id)
    tree = await build_tree(descendant, root_label=item["title"])
    notifications = await repositories.list_item_notifications(item_id)
    return {
        "item": jsonable_encoder(item),
        "tree": tree_to_dict(tree),
        "notifications": jsonable_encoder(notifications),
    }


@router.patch("/v1/items/{item_id}")
async def patch_item(item_id: str, payload: ItemPatch, user: dict = Depends(require_user)):
    item = await _get_item(user, item_id)
    updated = await item_service.update_item(item, payload.model_dump(exclude_unset=True))
    return jsonable_encoder(updated)


@router.delete("/v1/items/{item_id}")
async def delete_item(item_id: str, user: dict = Depends(require_user)):
    item = await _get_item(user, item_id)
    await item_service.delete_item(item)
    return {"ok": True}


@router.post("/v1/items/{item_id}/state")
async def change_state(item_id: str, payload: ItemStateChange, user: dict = Depends(require_user)):
    item = await _get_item(user, item_id)
    changed = await item_service.set_state(user, item, payload.state, payload.deferred_to)
    if not changed:
        raise HTTPException(status_code=400, detail=f"{item['item_type']} items cannot change state")
    return jsonable_encoder(await repositories.get_item(item_id))


@router.post("/v1/items/{item_id}/defer")
async def defer_item(item_id: str, payload: ItemDefer, user: dict = Depends(require_user)):
    item = await _get_item(user, item_id)
    result = await item_service.defer(user, item, payload.target_date)
    return {
        "item": jsonable_encoder(await repositories.get_item(item_id)),
        "new_item": jsonable_encoder(result["new_item"]),
        "day": jsonable_encoder(result["day"]),
        "nested_items_count": result["nested_items_count"],
    }


@router.post("/v1/items/{item_id}/undefer")
async def undefer_item(item_id: str, user: dict = Depends(require_user)):
    item = await _get_item(user, item_id)
    return jsonable_encoder(await item_service.undefer(user, item))


@router.post("/v1/reparent")
async def reparent(payload: Reparent, user: dict = Depends(require_user)):
    record = await get_owned(user, payload.record_type, payload.record_id)
    target = await owned_descendant(user, payload.target_type, payload.target_id)
    if payload.record_type == "Item" and payload.target_type == "List":
        if record["item_type"] not in list_service.LIST_ITEM_TYPES:
            raise HTTPException(
                status_code=400,
                detail="Cannot move this item type to a list. Lists can only contain reusable or section items.",
            )
    await item_service.reparent(payload.record_type, record, target)
    return (await repositories.get_descendant(target.id)).to_dict()


@router.post("/v1/descendants/{record_type}/{record_id}/reorder")
async def reorder(record_type: str, record_id: str, payload: Reorder, user: dict = Depends(require_user)):
    descendant = await owned_descendant(user, record_type, record_id)
    descendant.reorder_active(payload.active_items)
    await repositories.save_descendant(descendant)
    return descendant.to_dict()


@router.post("/v1/descendants/{record_type}/{record_id}/move")
async def move(record_type: str, record_id: str, payload: MoveRecord, user: dict = Depends(require_user)):
    descendant = await owned_descendant(user, record_type, record_id)
    moved = await item_service.move_within(descendant, payload.record_type, payload.record_id, payload.direction)
    return {"moved": moved, "descendant": descendant.to_dict()}
