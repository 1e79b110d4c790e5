from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder

from doosr import repositories
from doosr.auth import require_user
from doosr.schemas import NotificationCreate
from doosr.services import notifications

router = APIRouter()


async def _get_notification(user: dict, notification_id: str) -> dict:
    notification = await repositories.get_user_notification(user["id"], notification_id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification


@router.get("/v1/notifications")
async def list_notifications(status: Optional[str] = Query(None), user: dict = Depends(require_user)):
    items = await repositories.list_notifications(user["id"], status=status)
    return {"items": jsonable_encoder(items), "unread_count": await notifications.unread_count(user)}


@router.post("/v1/notifications")
async def create_notification(payload: NotificationCreate, user: dict = Depends(require_user)):
    item = await repositories.get_user_item(user["id"], payload.item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    return jsonable_encoder(await notifications.create(user, item, payload.remind_at, payload.channels))


@router.post("/v1/notifications/read-all")
async def mark_all_read(user: dict = Depends(require_user)):
    return {"updated": await notifications.mark_all_read(user)}


@router.post("/v1/notifications/{notification_id}/read")
async def mark_read(notification_id: str, user: dict = Depends(require_user)):
    await notifications.mark_read(await _get_notification(user, notification_id))
    return jsonable_encoder(await _get_notification(user, notification_id))


@router.post("/v1/notifications/{notification_id}/dismiss")
async def dismiss(notification_id: str, user: dict = Depends(require_user)):
    await notifications.mark_dismissed(await _get_notification(user, notification_id))
    return jsonable_encoder(await _get_notification(user, notification_id))


@router.delete("/v1/notifications/{notification_id}")
async def cancel(notification_id: str, user: dict = Depends(require_user)):
    cancelled = await notifications.cancel(await _get_notification(user, notification_id))
    if not cancelled:
        raise HTTPException(status_code=400, detail="Only pending notifications can be cancelled")
    return {"ok": True}
