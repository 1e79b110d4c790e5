from __future__ import annotations

from fastapi import Depends, Header, HTTPException

from doosr import repositories
from doosr.settings import get_settings


async def require_user_email(
    x_user_email: str | None = Header(default=None, alias="X-User-Email"),
    x_backend_token: str | None = Header(default=None, alias="X-Backend-Token"),
) -> str:
    settings = get_settings()
    if not x_backend_token or x_backend_token != settings.backend_session_secret:
        raise HTTPException(status_code=401, detail="Invalid backend token")
    if not x_user_email:
        raise HTTPException(status_code=401, detail="Missing user email")
    email = x_user_email.strip().lower()
    if settings.allowed_emails and email not in settings.allowed_emails:
        raise HTTPException(status_code=403, detail="User not allowed")
    return email


async def require_user(user_email: str = Depends(require_user_email)) -> dict:
    return await repositories.get_or_create_user(user_email)


async def journal_session_token(
    x_journal_session: str | None = Header(default=None, alias="X-Journal-Session"),
) -> str | None:
    return x_journal_session.strip() if x_journal_session and x_journal_session.strip() else None
