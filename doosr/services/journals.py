from __future__ import annotations

import calendar
import json
import logging
from datetime import date

from doosr import repositories
from doosr.clock import parse_date
from doosr.errors import NotFoundError
from doosr.services import journal_encryption
from doosr.services.item_tree import Node, build_tree, flatten
from doosr.services.journal_encryption import DecryptionError
from doosr.services.journal_protection import JournalLockedError

logger = logging.getLogger(__name__)

VALID_FREQUENCIES = (
    "daily",
    "weekly_start",
    "weekly_end",
    "monthly_start",
    "monthly_end",
    "day_of_month",
    "every_n_days",
    "specific_weekdays",
)


def _sunday_based_weekday(value: date) -> int:
    return (value.weekday() + 1) % 7


def _coerce_rule(schedule_rule) -> dict:
    if isinstance(schedule_rule, str):
        try:
            schedule_rule = json.loads(schedule_rule)
        except ValueError:
            return {}
    return schedule_rule if isinstance(schedule_rule, dict) else {}


def is_scheduled(schedule_rule, target) -> bool:
    rule = _coerce_rule(schedule_rule)
    if not rule:
        return False
    frequency = rule.get("frequency")
    if not frequency:
        return False
    target = parse_date(target)

    if frequency == "daily":
        return True
    if frequency == "weekly_start":
        return _sunday_based_weekday(target) == 0
    if frequency == "weekly_end":
        return _sunday_based_weekday(target) == 6
    if frequency == "monthly_start":
        return target.day == 1
    if frequency == "monthly_end":
        return target.day == calendar.monthrange(target.year, target.month)[1]
    if frequency == "day_of_month":
        day_of_month = rule.get("day_of_month")
        if day_of_month in (None, ""):
            return False
        try:
            return target.day == int(day_of_month)
        except (TypeError, ValueError):
            return False
    if frequency == "every_n_days":
        # No last-occurrence tracking yet, so this never fires.
        return False
    if frequency == "specific_weekdays":
        days_of_week = rule.get("days_of_week")
        if not days_of_week or not isinstance(days_of_week, list):
            return False
        return _sunday_based_weekday(target) in days_of_week
    return False


def validate_schedule_rule(schedule_rule) -> dict:
    if schedule_rule in (None, "", {}):
        return {}
    if not isinstance(schedule_rule, dict):
        raise ValueError("Schedule rule must be a valid JSON object")
    frequency = schedule_rule.get("frequency")
    if frequency and frequency not in VALID_FREQUENCIES:
        raise ValueError(f"Schedule rule has invalid frequency: {frequency}")
    return schedule_rule


def template_scheduled_for(template: dict, target) -> bool:
    if not template.get("active"):
        return False
    return is_scheduled(template.get("schedule_rule"), target)


async def save_template(user: dict, payload: dict, template_id: str | None = None) -> dict:
    clean = dict(payload)
    if "schedule_rule" in clean:
        clean["schedule_rule"] = validate_schedule_rule(clean["schedule_rule"])
    if template_id is None:
        return await repositories.create_prompt_template(user["id"], clean)
    existing = await repositories.get_prompt_template(user["id"], template_id)
    if not existing:
        raise NotFoundError("Prompt template not found")
    return await repositories.update_prompt_template(user["id"], template_id, clean)


async def create_prompts_for_date(user: dict, journal: dict, target: date) -> list[dict]:
    templates = await repositories.list_prompt_templates(user["id"], active_only=True)
    existing_texts = {prompt["prompt_text"] for prompt in await repositories.list_journal_prompts(journal["id"])}
    descendant = await repositories.ensure_descendant("Journal", journal["id"])
    created = []
    for template in templates:
        if not template_scheduled_for(template, target):
            continue
        if template["prompt_text"] in existing_texts:
            continue
        prompt = await repositories.create_journal_prompt(user["id"], journal["id"], template["prompt_text"])
        descendant.add_active_record("JournalPrompt", prompt["id"])
        existing_texts.add(prompt["prompt_text"])
        created.append(prompt)
    if created:
        await repositories.save_descendant(descendant)
    return created


async def open_or_create(user: dict, target) -> dict:
    target = parse_date(target)
    journal = await repositories.get_journal_by_date(user["id"], target.isoformat())
    if not journal:
        journal = await repositories.create_journal(user["id"], target.isoformat())
    prompts = await create_prompts_for_date(user, journal, target)
    return {"journal": journal, "prompts_added": bool(prompts)}


async def add_prompt(user: dict, journal: dict, prompt_text: str | None) -> dict:
    prompt_text = (prompt_text or "").strip()
    if not prompt_text:
        raise ValueError("Prompt text cannot be empty")
    prompt = await repositories.create_journal_prompt(user["id"], journal["id"], prompt_text)
    descendant = await repositories.ensure_descendant("Journal", journal["id"])
    descendant.add_active_record("JournalPrompt", prompt["id"])
    await repositories.save_descendant(descendant)
    return prompt


def _sealed_content(user: dict, content: str, key: bytes | None) -> dict:
    if not user.get("journal_protection_enabled"):
        return {"content": content, "encrypted_content": None, "content_iv": None}
    if key is None:
        raise JournalLockedError("Journal is locked")
    return journal_encryption.encrypt_fragment_content(content, key)


async def add_fragment(
    user: dict, journal: dict, content: str | None, journal_prompt_id: str | None = None, key: bytes | None = None
) -> dict:
    content = (content or "").strip()
    if not content:
        raise ValueError("Content cannot be empty")
    parent_type, parent_id = "Journal", journal["id"]
    if journal_prompt_id:
        prompts = {prompt["id"] for prompt in await repositories.list_journal_prompts(journal["id"])}
        if journal_prompt_id not in prompts:
            raise NotFoundError("Journal prompt not found")
        parent_type, parent_id = "JournalPrompt", journal_prompt_id

    fragment = await repositories.create_journal_fragment(
        user["id"],
        journal["id"],
        {"journal_prompt_id": journal_prompt_id, **_sealed_content(user, content, key)},
    )
    descendant = await repositories.ensure_descendant(parent_type, parent_id)
    descendant.add_active_record("JournalFragment", fragment["id"])
    await repositories.save_descendant(descendant)
    return fragment


async def update_fragment(user: dict, fragment: dict, content: str | None, key: bytes | None = None) -> None:
    content = (content or "").strip()
    if not content:
        raise ValueError("Content cannot be empty")
    await repositories.update_journal_fragment(fragment["id"], _sealed_content(user, content, key))


async def delete_fragment(fragment: dict) -> None:
    for descendant in await repositories.list_containing_descendants("JournalFragment", fragment["id"]):
        descendant.remove_record("JournalFragment", fragment["id"])
        await repositories.save_descendant(descendant)
    await repositories.delete_journal_fragment(fragment["id"])


def read_fragment(fragment: dict, key: bytes | None) -> dict:
    """Fragment payload with readable content, or ``locked`` when the key is missing or wrong."""
    payload = {
        "id": fragment["id"],
        "journal_id": fragment["journal_id"],
        "journal_prompt_id": fragment.get("journal_prompt_id"),
        "encrypted": bool(fragment.get("encrypted_content")),
        "locked": False,
        "content": fragment.get("content"),
    }
    if not payload["encrypted"]:
        return payload
    if key is None:
        payload.update(locked=True, content=None)
        return payload
    try:
        payload["content"] = journal_encryption.decrypt_fragment_content(fragment, key)
    except DecryptionError:
        logger.warning("Could not decrypt fragment %s with the session key", fragment["id"])
        payload.update(locked=True, content=None)
    return payload


def _reveal_labels(node: Node, key: bytes | None) -> None:
    for child in flatten(node):
        if child.record_type != "JournalFragment" or child.record is None:
            continue
        view = read_fragment(child.record, key)
        if not view["locked"] and view["content"] is not None:
            child.label = view["content"][:100]


async def journal_tree(journal: dict, key: bytes | None = None) -> Node:
    descendant = await repositories.ensure_descendant("Journal", journal["id"])
    tree = await build_tree(descendant, root_label="journal")
    _reveal_labels(tree, key)
    return tree
