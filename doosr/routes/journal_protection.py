from __future__ import annotations

from fastapi import APIRouter, Depends

from doosr.auth import journal_session_token, require_user
from doosr.schemas import (
    PasswordChange,
    PasswordPayload,
    ProtectionConfirm,
    ProtectionEnable,
    ProtectionRecover,
    SessionTimeout,
)
from doosr.services import journal_protection

router = APIRouter()


def _public_user(user: dict) -> dict:
    return {
        "journal_protection_enabled": bool(user.get("journal_protection_enabled")),
        "journal_session_timeout_minutes": user.get("journal_session_timeout_minutes"),
    }


@router.get("/v1/journal-protection")
async def protection_status(user: dict = Depends(require_user)):
    return await journal_protection.status(user)


@router.post("/v1/journal-protection/seed")
async def generate_seed(payload: ProtectionEnable, user: dict = Depends(require_user)):
    return await journal_protection.generate_seed(user, payload.password, payload.password_confirmation)


@router.post("/v1/journal-protection/confirm")
async def confirm_seed(payload: ProtectionConfirm, user: dict = Depends(require_user)):
    updated = await journal_protection.confirm_seed(user, payload.token, payload.seed_phrase)
    return _public_user(updated)


@router.post("/v1/journal-protection/unlock")
async def unlock(payload: PasswordPayload, user: dict = Depends(require_user)):
    return await journal_protection.unlock(user, payload.password)


@router.post("/v1/journal-protection/lock")
async def lock(token: str | None = Depends(journal_session_token), user: dict = Depends(require_user)):
    await journal_protection.lock(token)
    return {"ok": True}


@router.post("/v1/journal-protection/password")
async def change_password(payload: PasswordChange, user: dict = Depends(require_user)):
    updated = await journal_protection.change_password(
        user, payload.current_password, payload.new_password, payload.new_password_confirmation
    )
    return _public_user(updated)


@router.post("/v1/journal-protection/disable")
async def disable(payload: PasswordPayload, user: dict = Depends(require_user)):
    return _public_user(await journal_protection.disable(user, payload.password))


@router.post("/v1/journal-protection/recover")
async def recover(payload: ProtectionRecover, user: dict = Depends(require_user)):
    updated = await journal_protection.recover(
        user, payload.seed_phrase, payload.new_password, payload.new_password_confirmation
    )
    return _public_user(updated)


@router.post("/v1/journal-protection/rotate-seed")
async def rotate_seed(payload: PasswordPayload, user: dict = Depends(require_user)):
    return await journal_protection.rotate_seed(user, payload.password)


@router.post("/v1/journal-protection/timeout")
async def session_timeout(payload: SessionTimeout, user: dict = Depends(require_user)):
    return _public_user(await journal_protection.update_session_timeout(user, payload.minutes))
