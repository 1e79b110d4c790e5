from __future__ import annotations

import asyncio
import json
import logging
from datetime import timedelta

from doosr import repositories
from doosr.clock import utc_now
from doosr.logging_config import configure_logging
from doosr.services import journal_encryption, journal_protection, notifications

logger = logging.getLogger(__name__)

JOB_NOTIFICATION_CHECK = "notification_check"
MAX_ATTEMPTS = 10


def _job_keys(row: dict) -> dict[str, bytes]:
    if not row.get("payload_enc"):
        raise ValueError(f"Job {row['id']} has no payload")
    payload = json.loads(journal_encryption.unseal(row["payload_enc"]))
    return {name: journal_encryption.key_from_text(value) for name, value in payload.items()}


async def _handle_job(row: dict) -> None:
    kind = row["kind"]
    user_id = row.get("user_id")

    if kind == journal_protection.JOB_BULK_ENCRYPT:
        keys = _job_keys(row)
        await journal_protection.bulk_encrypt(user_id, keys["key"])
        return

    if kind == journal_protection.JOB_BULK_DECRYPT:
        keys = _job_keys(row)
        await journal_protection.bulk_decrypt(user_id, keys["key"])
        return

    if kind == journal_protection.JOB_BULK_REENCRYPT:
        keys = _job_keys(row)
        await journal_protection.bulk_reencrypt(user_id, keys["old_key"], keys["new_key"])
        return

    if kind == JOB_NOTIFICATION_CHECK:
        await notifications.check_due()
        return

    raise ValueError(f"Unknown job kind: {kind}")


async def process_jobs_once(limit: int = 25) -> int:
    rows = await repositories.list_pending_jobs(limit=limit)
    if not rows:
        return 0
    for row in rows:
        try:
            await _handle_job(row)
            await repositories.mark_job_done(row["id"])
            logger.info("Job %s (%s) done", row["id"], row["kind"])
        except Exception as exc:
            attempts = int(row.get("attempts") or 0) + 1
            delay = min(300, 2 ** min(attempts, 8))
            next_retry_at = (utc_now() + timedelta(seconds=delay)).isoformat()
            status = "failed" if attempts >= MAX_ATTEMPTS else "pending"
            logger.exception("Job %s (%s) failed, attempt %s", row["id"], row["kind"], attempts)
            await repositories.mark_job_error(row["id"], attempts, next_retry_at, str(exc), status=status)
    return len(rows)


async def run_forever() -> None:
    while True:
        await process_jobs_once(limit=25)
        await notifications.check_due()
        await asyncio.sleep(5)


if __name__ == "__main__":
    configure_logging()
    asyncio.run(run_forever())
