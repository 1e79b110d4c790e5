from __future__ import annotations

from fastapi import APIRouter, Depends

from doosr import repositories
from doosr.auth import require_user
from doosr.schemas import SettingsPatch
from doosr.services import sections

router = APIRouter()


def _settings_payload(user: dict) -> dict:
    stored = user.get("settings") or {}
    return {
        "permanent_sections": sections.permanent_section_titles(user),
        "day_migration_settings": sections.migration_settings_for(user),
        "migration_options": sections.MIGRATION_OPTIONS,
        "notification_preferences": stored.get("notification_preferences") or {},
        "journal_session_timeout_minutes": user.get("journal_session_timeout_minutes"),
    }


@router.get("/v1/settings")
async def get_settings(user: dict = Depends(require_user)):
    return _settings_payload(user)


@router.patch("/v1/settings")
async def patch_settings(payload: SettingsPatch, user: dict = Depends(require_user)):
    patch = payload.model_dump(exclude_unset=True)
    if "permanent_sections" in patch:
        await repositories.set_user_setting(
            user["id"], "permanent_sections", sections.normalize_section_titles(patch["permanent_sections"])
        )
    if "day_migration_settings" in patch:
        await repositories.set_user_setting(user["id"], "day_migration_settings", patch["day_migration_settings"] or {})
    if "notification_preferences" in patch:
        await repositories.set_user_setting(
            user["id"], "notification_preferences", patch["notification_preferences"] or {}
        )
    return _settings_payload(await repositories.get_user(user["id"]))
