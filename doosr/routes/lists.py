from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder

from doosr import repositories
from doosr.auth import require_user
from doosr.schemas import ListCreate, ListItemCreate, ListPatch
from doosr.services import lists as list_service
from doosr.services.item_tree import tree_to_dict

router = APIRouter()


async def _get_list(user: dict, list_id: str) -> dict:
    lst = await repositories.get_user_list(user["id"], list_id)
    if not lst:
        raise HTTPException(status_code=404, detail="List not found")
    return lst


async def _parent_for(owner: dict, lst: dict, parent_item_id: str | None):
    if not parent_item_id:
        return None
    parent_item = await repositories.get_user_item(owner["id"], parent_item_id)
    if not parent_item or parent_item["item_type"] != "section":
        raise HTTPException(status_code=404, detail="Section not found")
    return await repositories.ensure_descendant("Item", parent_item["id"])


@router.get("/v1/lists")
async def list_lists(user: dict = Depends(require_user)):
    return {"items": jsonable_encoder(await repositories.list_lists(user["id"]))}


@router.post("/v1/lists")
async def create_list(payload: ListCreate, user: dict = Depends(require_user)):
    return jsonable_encoder(await repositories.create_list(user["id"], payload.model_dump()))


@router.get("/v1/lists/{list_id}")
async def get_list(list_id: str, user: dict = Depends(require_user)):
    lst = await _get_list(user, list_id)
    tree = await list_service.list_tree(lst)
    return {"list": jsonable_encoder(lst), "tree": tree_to_dict(tree)}


@router.patch("/v1/lists/{list_id}")
async def patch_list(list_id: str, payload: ListPatch, user: dict = Depends(require_user)):
    await _get_list(user, list_id)
    return jsonable_encoder(await repositories.update_list(list_id, payload.model_dump(exclude_unset=True)))


@router.delete("/v1/lists/{list_id}")
async def delete_list(list_id: str, user: dict = Depends(require_user)):
    await list_service.delete_list(await _get_list(user, list_id))
    return {"ok": True}


@router.post("/v1/lists/{list_id}/items")
async def add_list_item(list_id: str, payload: ListItemCreate, user: dict = Depends(require_user)):
    lst = await _get_list(user, list_id)
    parent = await _parent_for(user, lst, payload.parent_item_id)
    result = await list_service.add_item(
        user, lst, {"title": payload.title, "item_type": payload.item_type}, parent=parent
    )
    return {"item": jsonable_encoder(result["item"]), "status": result["status"]}


async def _public_list(slug: str) -> dict:
    lst = await repositories.get_list_by_slug(slug)
    if not lst or not list_service.is_public(lst):
        raise HTTPException(status_code=404, detail="List not found")
    return lst


@router.get("/p/lists/{slug}")
async def public_list(slug: str):
    lst = await _public_list(slug)
    tree = await list_service.list_tree(lst)
    return {
        "list": {"title": lst["title"], "slug": lst["slug"], "visibility": lst["visibility"]},
        "editable": list_service.is_editable(lst),
        "tree": tree_to_dict(tree),
    }


@router.post("/p/lists/{slug}/items")
async def public_add_item(slug: str, payload: ListItemCreate):
    lst = await _public_list(slug)
    if not list_service.is_editable(lst):
        raise HTTPException(status_code=403, detail="List is read only")
    owner = await repositories.get_user(lst["user_id"])
    parent = await _parent_for(owner, lst, payload.parent_item_id)
    result = await list_service.add_item(
        owner, lst, {"title": payload.title, "item_type": payload.item_type}, parent=parent
    )
    return {"item": jsonable_encoder(result["item"]), "status": result["status"]}
