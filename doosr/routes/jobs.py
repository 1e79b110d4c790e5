from __future__ import annotations

from fastapi import APIRouter, Depends

from doosr.auth import require_user_email
from doosr.workers import job_worker
from doosr.services import notifications

router = APIRouter()


@router.post("/v1/jobs/run")
async def run_jobs(user_email: str = Depends(require_user_email)):
    processed = await job_worker.process_jobs_once(limit=25)
    result = await notifications.check_due()
    return {"processed": processed, "notified_count": result["notified_count"], "errors": result["errors"]}
