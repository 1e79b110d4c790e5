from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder

from doosr.auth import require_user_email
from doosr.clock import today
from doosr.services import fixed_calendar

router = APIRouter()


@router.get("/v1/fixed-calendar")
async def describe_date(
    on: Optional[date] = Query(None, alias="date"),
    user_email: str = Depends(require_user_email),
):
    return jsonable_encoder(fixed_calendar.describe(on or today()))


@router.get("/v1/fixed-calendar/{cycle_year}/{month_index}")
async def month_view(cycle_year: int, month_index: int, user_email: str = Depends(require_user_email)):
    if month_index < 0 or month_index >= len(fixed_calendar.MONTHS):
        raise HTTPException(status_code=404, detail="Month not found")
    return jsonable_encoder(fixed_calendar.month_view(cycle_year, month_index))
