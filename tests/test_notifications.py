from datetime import datetime, timedelta

import pytest

from doosr import repositories
from doosr.clock import utc_now
from doosr.services import notifications
from doosr.workers.job_worker import JOB_NOTIFICATION_CHECK, process_jobs_once


async def _item(user, title="Pay rent"):
    return await repositories.create_item(user["id"], {"title": title})


async def _due(user, item, channels=("in_app",)):
    remind_at = (utc_now() - timedelta(minutes=1)).isoformat()
    return await repositories.create_notification(user["id"], item["id"], remind_at, list(channels))


async def test_create_validates_time_and_channels(user):
    item = await _item(user)
    with pytest.raises(ValueError, match="future"):
        await notifications.create(user, item, utc_now() - timedelta(hours=1))
    with pytest.raises(ValueError, match="invalid values: sms"):
        await notifications.create(user, item, utc_now() + timedelta(hours=1), ["in_app", "sms"])

    created = await notifications.create(user, item, utc_now() + timedelta(hours=1))
    assert created["status"] == "pending"
    assert created["channels"] == ["in_app"]


async def test_check_due_delivers_in_app_and_skips_push(user):
    item = await _item(user)
    notification = await _due(user, item, channels=("in_app", "push"))

    result = await notifications.check_due()

    assert result == {"notified_count": 1, "errors": []}
    stored = await repositories.get_notification(notification["id"])
    assert stored["status"] == "sent"
    assert stored["sent_at"]
    logs = await repositories.list_notification_logs(notification["id"])
    assert {(log["channel"], log["status"]) for log in logs} == {("in_app", "delivered"), ("push", "skipped")}
    assert await notifications.unread_count(user) == 1


async def test_push_only_notification_stays_pending(user):
    item = await _item(user)
    notification = await _due(user, item, channels=("push",))

    assert (await notifications.check_due())["notified_count"] == 0
    assert (await repositories.get_notification(notification["id"]))["status"] == "pending"


class _Noon(datetime):
    @classmethod
    def now(cls, tz=None):
        return datetime(2025, 1, 1, 12, 0, tzinfo=tz)


async def test_quiet_hours_hold_back_delivery(user, monkeypatch):
    monkeypatch.setattr(notifications, "datetime", _Noon)
    await repositories.set_user_setting(
        user["id"], "notification_preferences", {"quiet_hours_start": "09:00", "quiet_hours_end": "17:00"}
    )
    user = await repositories.get_user(user["id"])
    notification = await _due(user, await _item(user))

    assert await notifications.check_due() == {"notified_count": 0, "errors": []}
    assert (await repositories.get_notification(notification["id"]))["status"] == "pending"
    assert notifications.in_quiet_hours(user, datetime(2025, 1, 1, 17, 0)) is False


def test_quiet_hours_wrap_midnight():
    user = {"settings": {"notification_preferences": {"quiet_hours_start": "22:00", "quiet_hours_end": "07:00"}}}
    assert notifications.in_quiet_hours(user, datetime(2025, 1, 1, 23, 30))
    assert notifications.in_quiet_hours(user, datetime(2025, 1, 1, 6, 59))
    assert not notifications.in_quiet_hours(user, datetime(2025, 1, 1, 12, 0))
    assert not notifications.in_quiet_hours({"settings": {}}, datetime(2025, 1, 1, 23, 30))


async def test_status_changes(user):
    item = await _item(user)
    pending = await notifications.create(user, item, utc_now() + timedelta(hours=2))
    due = await _due(user, item)
    await notifications.check_due()

    assert await notifications.mark_all_read(user) == 1
    assert (await repositories.get_notification(due["id"]))["status"] == "read"

    await notifications.mark_dismissed(await repositories.get_notification(due["id"]))
    assert (await repositories.get_notification(due["id"]))["status"] == "dismissed"

    assert await notifications.cancel(await repositories.get_notification(due["id"])) is False
    assert await notifications.cancel(pending) is True
    assert await repositories.get_notification(pending["id"]) is None


async def test_notification_check_job(user):
    notification = await _due(user, await _item(user))
    await repositories.enqueue_job(None, JOB_NOTIFICATION_CHECK)

    assert await process_jobs_once() == 1
    assert (await repositories.get_notification(notification["id"]))["status"] == "sent"


async def test_deleting_item_removes_its_notifications(user):
    item = await _item(user)
    notification = await notifications.create(user, item, utc_now() + timedelta(days=1))

    await repositories.delete_item(item["id"])

    assert await repositories.get_notification(notification["id"]) is None
