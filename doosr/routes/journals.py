from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder

from doosr import repositories
from doosr.auth import journal_session_token, require_user
from doosr.schemas import (
    FragmentCreate,
    FragmentPatch,
    JournalOpen,
    JournalPromptCreate,
    PromptTemplateCreate,
    PromptTemplatePatch,
)
from doosr.services import journal_protection, journals
from doosr.services.item_tree import tree_to_dict

router = APIRouter()


async def _get_journal(user: dict, journal_id: str) -> dict:
    journal = await repositories.get_user_journal(user["id"], journal_id)
    if not journal:
        raise HTTPException(status_code=404, detail="Journal not found")
    return journal


async def _get_fragment(user: dict, fragment_id: str) -> dict:
    fragment = await repositories.get_user_fragment(user["id"], fragment_id)
    if not fragment:
        raise HTTPException(status_code=404, detail="Fragment not found")
    return fragment


async def _write_key(user: dict, token: str | None) -> bytes | None:
    if not user.get("journal_protection_enabled"):
        return None
    return await journal_protection.resolve_key(user, token)


@router.get("/v1/journals")
async def list_journals(user: dict = Depends(require_user)):
    return {"items": jsonable_encoder(await repositories.list_journals(user["id"]))}


@router.post("/v1/journals/open")
async def open_journal(payload: JournalOpen, user: dict = Depends(require_user)):
    result = await journals.open_or_create(user, payload.date)
    return {"journal": jsonable_encoder(result["journal"]), "prompts_added": result["prompts_added"]}


@router.get("/v1/journals/{journal_id}")
async def get_journal(
    journal_id: str,
    user: dict = Depends(require_user),
    token: str | None = Depends(journal_session_token),
):
    journal = await _get_journal(user, journal_id)
    key = await journal_protection.optional_key(user, token)
    fragments = await repositories.list_journal_fragments(journal_id)
    tree = await journals.journal_tree(journal, key)
    return {
        "journal": jsonable_encoder(journal),
        "protected": bool(user.get("journal_protection_enabled")),
        "unlocked": key is not None,
        "prompts": jsonable_encoder(await repositories.list_journal_prompts(journal_id)),
        "fragments": [journals.read_fragment(fragment, key) for fragment in fragments],
        "tree": tree_to_dict(tree),
    }


@router.delete("/v1/journals/{journal_id}")
async def delete_journal(journal_id: str, user: dict = Depends(require_user)):
    await _get_journal(user, journal_id)
    await repositories.delete_journal(journal_id)
    return {"ok": True}


@router.post("/v1/journals/{journal_id}/prompts")
async def add_prompt(journal_id: str, payload: JournalPromptCreate, user: dict = Depends(require_user)):
    journal = await _get_journal(user, journal_id)
    return jsonable_encoder(await journals.add_prompt(user, journal, payload.prompt_text))


@router.post("/v1/journals/{journal_id}/fragments")
async def add_fragment(
    journal_id: str,
    payload: FragmentCreate,
    user: dict = Depends(require_user),
    token: str | None = Depends(journal_session_token),
):
    journal = await _get_journal(user, journal_id)
    key = await _write_key(user, token)
    fragment = await journals.add_fragment(user, journal, payload.content, payload.journal_prompt_id, key=key)
    return journals.read_fragment(fragment, key)


@router.patch("/v1/journal-fragments/{fragment_id}")
async def patch_fragment(
    fragment_id: str,
    payload: FragmentPatch,
    user: dict = Depends(require_user),
    token: str | None = Depends(journal_session_token),
):
    fragment = await _get_fragment(user, fragment_id)
    key = await _write_key(user, token)
    await journals.update_fragment(user, fragment, payload.content, key=key)
    return journals.read_fragment(await _get_fragment(user, fragment_id), key)


@router.delete("/v1/journal-fragments/{fragment_id}")
async def delete_fragment(fragment_id: str, user: dict = Depends(require_user)):
    await journals.delete_fragment(await _get_fragment(user, fragment_id))
    return {"ok": True}


@router.get("/v1/journal-prompt-templates")
async def list_templates(user: dict = Depends(require_user)):
    return {"items": jsonable_encoder(await repositories.list_prompt_templates(user["id"]))}


@router.post("/v1/journal-prompt-templates")
async def create_template(payload: PromptTemplateCreate, user: dict = Depends(require_user)):
    return jsonable_encoder(await journals.save_template(user, payload.model_dump()))


@router.patch("/v1/journal-prompt-templates/{template_id}")
async def patch_template(template_id: str, payload: PromptTemplatePatch, user: dict = Depends(require_user)):
    template = await journals.save_template(user, payload.model_dump(exclude_unset=True), template_id=template_id)
    return jsonable_encoder(template)


@router.delete("/v1/journal-prompt-templates/{template_id}")
async def delete_template(template_id: str, user: dict = Depends(require_user)):
    if not await repositories.get_prompt_template(user["id"], template_id):
        raise HTTPException(status_code=404, detail="Prompt template not found")
    await repositories.delete_prompt_template(user["id"], template_id)
    return {"ok": True}
