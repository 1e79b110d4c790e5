from __future__ import annotations

import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from doosr import repositories
from doosr.clock import to_utc_iso, utc_now, utc_now_iso
from doosr.settings import get_settings

logger = logging.getLogger(__name__)


async def create(user: dict, item: dict, remind_at, channels=None) -> dict:
    remind_at_iso = to_utc_iso(remind_at)
    if remind_at_iso is None:
        raise ValueError("remind_at is required")
    if datetime.fromisoformat(remind_at_iso) <= utc_now():
        raise ValueError("remind_at must be in the future")
    channels = list(channels or ["in_app"])
    invalid = [channel for channel in channels if channel not in repositories.NOTIFICATION_CHANNELS]
    if invalid:
        raise ValueError(f"channels contains invalid values: {', '.join(invalid)}")
    return await repositories.create_notification(user["id"], item["id"], remind_at_iso, channels)


async def mark_sent(notification: dict) -> None:
    if notification["status"] == "sent":
        return
    await repositories.set_notification_status(notification["id"], "sent", "sent_at")


async def mark_read(notification: dict) -> None:
    if notification["status"] == "read":
        return
    await repositories.set_notification_status(notification["id"], "read", "read_at")


async def mark_dismissed(notification: dict) -> None:
    if notification["status"] == "dismissed":
        return
    await repositories.set_notification_status(notification["id"], "dismissed")


async def cancel(notification: dict) -> bool:
    if notification["status"] != "pending":
        return False
    await repositories.delete_notification(notification["id"])
    return True


async def mark_all_read(user: dict) -> int:
    return await repositories.mark_all_notifications_read(user["id"])


def in_quiet_hours(user: dict, now: datetime | None = None) -> bool:
    preferences = (user.get("settings") or {}).get("notification_preferences") or {}
    quiet_start = preferences.get("quiet_hours_start")
    quiet_end = preferences.get("quiet_hours_end")
    if not quiet_start or not quiet_end:
        return False
    if now is None:
        now = datetime.now(ZoneInfo(get_settings().app_timezone))
    current = now.strftime("%H:%M")
    if quiet_start <= quiet_end:
        return quiet_start <= current < quiet_end
    return current >= quiet_start or current < quiet_end


async def _deliver(notification: dict, user: dict) -> bool:
    item = await repositories.get_item(notification["item_id"])
    message = item["title"] if item else "Reminder"
    delivered = False
    for channel in notification.get("channels") or []:
        if channel == "in_app":
            await repositories.add_notification_log(user["id"], notification["id"], channel, "delivered", message)
            delivered = True
        else:
            await repositories.add_notification_log(
                user["id"], notification["id"], channel, "skipped", "No delivery transport configured"
            )
    return delivered


async def check_due() -> dict:
    """Deliver every due pending reminder; failures are collected, never raised."""
    notified = 0
    errors = []
    users: dict[str, dict | None] = {}
    for notification in await repositories.list_due_notifications(utc_now_iso()):
        try:
            user_id = notification["user_id"]
            if user_id not in users:
                users[user_id] = await repositories.get_user(user_id)
            user = users[user_id]
            if user is None:
                continue
            if in_quiet_hours(user):
                logger.debug("Skipping notification %s, user in quiet hours", notification["id"])
                continue
            if await _deliver(notification, user):
                await mark_sent(notification)
                notified += 1
        except Exception as exc:
            logger.exception("Failed to process notification %s", notification["id"])
            errors.append(f"{notification['id']}: {exc}")
    if notified:
        logger.info("Sent %s notifications", notified)
    if errors:
        logger.error("Notification check errors: %s", ", ".join(errors))
    return {"notified_count": notified, "errors": errors}


async def unread_count(user: dict) -> int:
    return len(await repositories.list_notifications(user["id"], status="sent", limit=1000))
