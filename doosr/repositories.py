from __future__ import annotations

import json
from contextlib import asynccontextmanager
from contextvars import ContextVar
from uuid import uuid4

from sqlalchemy import text as sql_text, bindparam
from sqlalchemy.ext.asyncio import AsyncSession

from doosr.clock import utc_now_iso, to_utc_iso
from doosr.db import get_sessionmaker
from doosr.descendants import Descendant, dump_records, tuple_pattern
from doosr.errors import NotFoundError
from doosr.db_init import (
    USERS_TABLE,
    DAYS_TABLE,
    DESCENDANTS_TABLE,
    ITEMS_TABLE,
    LISTS_TABLE,
    NOTES_TABLE,
    NOTE_LINKS_TABLE,
    CHECKLISTS_TABLE,
    JOURNALS_TABLE,
    JOURNAL_PROMPTS_TABLE,
    JOURNAL_PROMPT_TEMPLATES_TABLE,
    JOURNAL_FRAGMENTS_TABLE,
    JOURNAL_SESSIONS_TABLE,
    JOURNAL_PROTECTION_REQUESTS_TABLE,
    NOTIFICATIONS_TABLE,
    NOTIFICATION_LOGS_TABLE,
    JOBS_TABLE,
    CUSTOMERS_TABLE,
    ACCOUNTING_ITEMS_TABLE,
    TAX_BRACKETS_TABLE,
    INVOICES_TABLE,
    INVOICE_ITEMS_TABLE,
)

ITEM_TYPES = ("completable", "section", "reusable", "trackable")
ITEM_STATES = ("todo", "done", "dropped", "deferred")
DAY_STATES = ("open", "closed")
LIST_TYPES = ("private_list", "public_list", "shared_list")
LIST_VISIBILITIES = ("read_only", "editable")
CHECKLIST_KINDS = ("template", "checklist")
CHECKLIST_FLOWS = ("sequential", "parallel")

# JSON text columns decoded on read, with the value used when the stored text is unusable.
JSON_COLUMNS = {
    USERS_TABLE: {"settings_json": ("settings", dict)},
    ITEMS_TABLE: {"extra_data": ("extra_data", dict)},
    CHECKLISTS_TABLE: {"items_json": ("items", list), "metadata_json": ("metadata", dict)},
    JOURNAL_PROMPT_TEMPLATES_TABLE: {"schedule_rule_json": ("schedule_rule", dict)},
    NOTIFICATIONS_TABLE: {"channels_json": ("channels", list)},
    INVOICES_TABLE: {"metadata_json": ("metadata", dict)},
}

RECORD_TABLES = {
    "Item": ITEMS_TABLE,
    "List": LISTS_TABLE,
    "Checklist": CHECKLISTS_TABLE,
    "Note": NOTES_TABLE,
    "Journal": JOURNALS_TABLE,
    "JournalPrompt": JOURNAL_PROMPTS_TABLE,
    "JournalFragment": JOURNAL_FRAGMENTS_TABLE,
    "Day": DAYS_TABLE,
}


def _new_id() -> str:
    return uuid4().hex


def _decode_json(raw, expected_type):
    if raw is None or raw == "":
        return expected_type()
    if isinstance(raw, expected_type):
        return raw
    try:
        value = json.loads(raw)
    except Exception:
        return expected_type()
    return value if isinstance(value, expected_type) else expected_type()


def _decode_row(table: str, row) -> dict:
    if not row:
        return {}
    payload = dict(row)
    for column, (name, expected_type) in JSON_COLUMNS.get(table, {}).items():
        if column in payload:
            payload[name] = _decode_json(payload.pop(column), expected_type)
    for flag in ("active", "journal_protection_enabled"):
        if flag in payload and payload[flag] is not None:
            payload[flag] = bool(payload[flag])
    return payload


def _encode_json(value) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


# Session shared by every repository call made inside ``transaction()``.
_current_session: ContextVar[AsyncSession | None] = ContextVar("doosr_session", default=None)


@asynccontextmanager
async def transaction():
    """Run the enclosed repository calls in one session, committed together or not at all."""
    if _current_session.get() is not None:
        yield
        return
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        async with session.begin():
            token = _current_session.set(session)
            try:
                yield
            finally:
                _current_session.reset(token)


@asynccontextmanager
async def _session(commit: bool = False):
    current = _current_session.get()
    if current is not None:
        yield current
        return
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        yield session
        if commit:
            await session.commit()


async def _fetch_one(sql: str, params: dict, table: str | None = None) -> dict | None:
    async with _session() as session:
        row = (await session.execute(sql_text(sql), params)).mappings().fetchone()
    if not row:
        return None
    return _decode_row(table, row) if table else dict(row)


async def _fetch_all(sql: str, params: dict, table: str | None = None, expanding: tuple = ()) -> list[dict]:
    statement = sql_text(sql)
    if expanding:
        statement = statement.bindparams(*[bindparam(name, expanding=True) for name in expanding])
    async with _session() as session:
        rows = (await session.execute(statement, params)).mappings().all()
    if table:
        return [_decode_row(table, row) for row in rows]
    return [dict(row) for row in rows]


async def _execute(sql: str, params: dict, expanding: tuple = ()) -> int:
    statement = sql_text(sql)
    if expanding:
        statement = statement.bindparams(*[bindparam(name, expanding=True) for name in expanding])
    async with _session(commit=True) as session:
        result = await session.execute(statement, params)
    return int(result.rowcount or 0)


async def _insert(table: str, record: dict) -> None:
    columns = list(record.keys())
    await _execute(
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join(':' + col for col in columns)})",
        record,
    )


async def _update_row(table: str, row_id: str, patch: dict, allowed: set[str], key: str = "id") -> int:
    updates = []
    params = {"row_id": row_id}
    for column, value in patch.items():
        if column not in allowed:
            continue
        updates.append(f"{column} = :{column}")
        params[column] = value
    if not updates:
        return 0
    updates.append("updated_at = :updated_at")
    params["updated_at"] = utc_now_iso()
    return await _execute(f"UPDATE {table} SET {', '.join(updates)} WHERE {key} = :row_id", params)


async def _fetch_by_ids(table: str, ids: list[str]) -> dict[str, dict]:
    clean = [str(item_id) for item_id in ids if item_id]
    if not clean:
        return {}
    rows = await _fetch_all(f"SELECT * FROM {table} WHERE id IN :ids", {"ids": clean}, table=table, expanding=("ids",))
    return {row["id"]: row for row in rows}


# --- users -----------------------------------------------------------------

USER_COLUMNS = {
    "name",
    "journal_protection_enabled",
    "journal_password_digest",
    "encrypted_seed_phrase",
    "journal_encryption_salt",
    "journal_session_timeout_minutes",
}


async def get_user(user_id: str) -> dict | None:
    return await _fetch_one(f"SELECT * FROM {USERS_TABLE} WHERE id = :id", {"id": user_id}, table=USERS_TABLE)


async def get_user_by_email(email: str) -> dict | None:
    return await _fetch_one(
        f"SELECT * FROM {USERS_TABLE} WHERE email = :email",
        {"email": email.strip().lower()},
        table=USERS_TABLE,
    )


async def get_or_create_user(email: str) -> dict:
    email = email.strip().lower()
    existing = await get_user_by_email(email)
    if existing:
        return existing
    now = utc_now_iso()
    await _execute(
        f"""
        INSERT INTO {USERS_TABLE} (id, email, name, settings_json, created_at, updated_at)
        VALUES (:id, :email, :name, '{{}}', :now, :now)
        ON CONFLICT(email) DO NOTHING
        """,
        {"id": _new_id(), "email": email, "name": email.split("@")[0].title(), "now": now},
    )
    return await get_user_by_email(email)


async def update_user(user_id: str, patch: dict) -> dict | None:
    clean = dict(patch)
    if "journal_protection_enabled" in clean:
        clean["journal_protection_enabled"] = int(bool(clean["journal_protection_enabled"]))
    await _update_row(USERS_TABLE, user_id, clean, USER_COLUMNS)
    return await get_user(user_id)


async def set_user_setting(user_id: str, key: str, value) -> dict:
    user = await get_user(user_id)
    if not user:
        raise NotFoundError("User not found")
    settings = dict(user.get("settings") or {})
    settings[key] = value
    await _execute(
        f"UPDATE {USERS_TABLE} SET settings_json = :settings, updated_at = :now WHERE id = :id",
        {"settings": _encode_json(settings), "now": utc_now_iso(), "id": user_id},
    )
    return settings


# --- descendants -----------------------------------------------------------

async def get_descendant(descendant_id: str) -> Descendant | None:
    row = await _fetch_one(f"SELECT * FROM {DESCENDANTS_TABLE} WHERE id = :id", {"id": descendant_id})
    return Descendant.from_row(row) if row else None


async def get_descendant_for(descendable_type: str, descendable_id: str) -> Descendant | None:
    row = await _fetch_one(
        f"""
        SELECT * FROM {DESCENDANTS_TABLE}
        WHERE descendable_type = :descendable_type AND descendable_id = :descendable_id
        """,
        {"descendable_type": descendable_type, "descendable_id": descendable_id},
    )
    return Descendant.from_row(row) if row else None


async def get_descendants_for(descendable_type: str, descendable_ids: list[str]) -> dict[str, Descendant]:
    clean = [str(item_id) for item_id in descendable_ids if item_id]
    if not clean:
        return {}
    rows = await _fetch_all(
        f"""
        SELECT * FROM {DESCENDANTS_TABLE}
        WHERE descendable_type = :descendable_type AND descendable_id IN :ids
        """,
        {"descendable_type": descendable_type, "ids": clean},
        expanding=("ids",),
    )
    return {row["descendable_id"]: Descendant.from_row(row) for row in rows}


async def ensure_descendant(descendable_type: str, descendable_id: str) -> Descendant:
    now = utc_now_iso()
    await _execute(
        f"""
        INSERT INTO {DESCENDANTS_TABLE}
        (id, descendable_type, descendable_id, active_items, inactive_items, created_at, updated_at)
        VALUES (:id, :descendable_type, :descendable_id, '[]', '[]', :now, :now)
        ON CONFLICT(descendable_type, descendable_id) DO NOTHING
        """,
        {"id": _new_id(), "descendable_type": descendable_type, "descendable_id": descendable_id, "now": now},
    )
    return await get_descendant_for(descendable_type, descendable_id)


async def save_descendant(descendant: Descendant) -> Descendant:
    await _execute(
        f"""
        UPDATE {DESCENDANTS_TABLE}
        SET active_items = :active_items, inactive_items = :inactive_items, updated_at = :updated_at
        WHERE id = :id
        """,
        {
            "id": descendant.id,
            "active_items": dump_records(descendant.active_items),
            "inactive_items": dump_records(descendant.inactive_items),
            "updated_at": utc_now_iso(),
        },
    )
    return descendant


async def list_containing_descendants(record_type: str, record_id: str) -> list[Descendant]:
    pattern = tuple_pattern(record_type, record_id)
    rows = await _fetch_all(
        f"""
        SELECT * FROM {DESCENDANTS_TABLE}
        WHERE active_items LIKE :pattern OR inactive_items LIKE :pattern
        ORDER BY created_at ASC
        """,
        {"pattern": pattern},
    )
    descendants = [Descendant.from_row(row) for row in rows]
    # LIKE is only a prefilter; confirm on the decoded lists.
    return [descendant for descendant in descendants if descendant.contains(record_type, record_id)]


async def find_containing_descendant(record_type: str, record_id: str) -> Descendant | None:
    found = await list_containing_descendants(record_type, record_id)
    return found[0] if found else None


async def delete_descendant_for(descendable_type: str, descendable_id: str) -> None:
    await _execute(
        f"DELETE FROM {DESCENDANTS_TABLE} WHERE descendable_type = :descendable_type AND descendable_id = :descendable_id",
        {"descendable_type": descendable_type, "descendable_id": descendable_id},
    )


async def fetch_records(record_type: str, ids: list[str]) -> dict[str, dict]:
    table = RECORD_TABLES.get(record_type)
    if not table:
        return {}
    return await _fetch_by_ids(table, ids)


# --- days ------------------------------------------------------------------

DAY_COLUMNS = {"state", "closed_at", "reopened_at", "imported_from_day_id", "imported_to_day_id", "imported_at"}


async def get_day(user_id: str, day_id: str) -> dict | None:
    return await _fetch_one(
        f"SELECT * FROM {DAYS_TABLE} WHERE id = :id AND user_id = :user_id",
        {"id": day_id, "user_id": user_id},
    )


async def get_day_by_date(user_id: str, day_iso: str) -> dict | None:
    return await _fetch_one(
        f"SELECT * FROM {DAYS_TABLE} WHERE user_id = :user_id AND date = :date",
        {"user_id": user_id, "date": day_iso},
    )


async def create_day(user_id: str, day_iso: str, state: str = "open") -> dict:
    if state not in DAY_STATES:
        raise ValueError(f"Invalid day state: {state}")
    existing = await get_day_by_date(user_id, day_iso)
    if existing:
        raise ValueError("Day already exists for this date")
    now = utc_now_iso()
    record = {
        "id": _new_id(),
        "user_id": user_id,
        "date": day_iso,
        "state": state,
        "created_at": now,
        "updated_at": now,
    }
    await _insert(DAYS_TABLE, record)
    await ensure_descendant("Day", record["id"])
    return await get_day(user_id, record["id"])


async def update_day(day_id: str, patch: dict) -> None:
    if "state" in patch and patch["state"] not in DAY_STATES:
        raise ValueError(f"Invalid day state: {patch['state']}")
    await _update_row(DAYS_TABLE, day_id, patch, DAY_COLUMNS)


async def list_days(user_id: str, limit: int = 30) -> list[dict]:
    return await _fetch_all(
        f"SELECT * FROM {DAYS_TABLE} WHERE user_id = :user_id ORDER BY date DESC LIMIT :limit",
        {"user_id": user_id, "limit": limit},
    )


async def find_latest_importable_day(user_id: str, before_iso: str) -> dict | None:
    return await _fetch_one(
        f"""
        SELECT * FROM {DAYS_TABLE}
        WHERE user_id = :user_id
          AND state = 'closed'
          AND imported_to_day_id IS NULL
          AND date < :before
        ORDER BY date DESC
        LIMIT 1
        """,
        {"user_id": user_id, "before": before_iso},
    )


async def find_previous_day(user_id: str, before_iso: str) -> dict | None:
    return await _fetch_one(
        f"""
        SELECT * FROM {DAYS_TABLE}
        WHERE user_id = :user_id
          AND imported_to_day_id IS NULL
          AND date < :before
        ORDER BY date DESC
        LIMIT 1
        """,
        {"user_id": user_id, "before": before_iso},
    )


async def get_day_by_id(day_id: str) -> dict | None:
    return await _fetch_one(f"SELECT * FROM {DAYS_TABLE} WHERE id = :id", {"id": day_id})


# --- items -----------------------------------------------------------------

ITEM_COLUMNS = {
    "title",
    "item_type",
    "state",
    "extra_data",
    "recurrence_rule",
    "recurring_next_item_id",
    "source_item_id",
    "done_at",
    "dropped_at",
    "deferred_at",
    "deferred_to",
}


def _normalize_item_payload(payload: dict) -> dict:
    clean = dict(payload)
    if "item_type" in clean and clean["item_type"] not in ITEM_TYPES:
        raise ValueError(f"Invalid item type: {clean['item_type']}")
    if "state" in clean and clean["state"] not in ITEM_STATES:
        raise ValueError(f"Invalid item state: {clean['state']}")
    if "title" in clean:
        title = " ".join(str(clean["title"] or "").split()).strip()
        if not title:
            raise ValueError("Title cannot be empty")
        clean["title"] = title
    if "extra_data" in clean:
        clean["extra_data"] = _encode_json(clean["extra_data"] or {})
    if "recurrence_rule" in clean and isinstance(clean["recurrence_rule"], dict):
        clean["recurrence_rule"] = _encode_json(clean["recurrence_rule"])
    for key in ("done_at", "dropped_at", "deferred_at", "deferred_to"):
        if key in clean:
            clean[key] = to_utc_iso(clean[key])
    return clean


async def create_item(user_id: str, payload: dict) -> dict:
    clean = _normalize_item_payload({"item_type": "completable", "state": "todo", "extra_data": {}, **payload})
    item_type = clean["item_type"]
    if item_type in {"section", "trackable"} and clean["state"] != "todo":
        raise ValueError(f"{item_type} items can only be in 'todo' state")
    now = utc_now_iso()
    record = {
        "id": _new_id(),
        "user_id": user_id,
        "created_at": now,
        "updated_at": now,
        **{key: value for key, value in clean.items() if key in ITEM_COLUMNS},
    }
    await _insert(ITEMS_TABLE, record)
    if item_type in {"section", "reusable"}:
        await ensure_descendant("Item", record["id"])
    return await get_item(record["id"])


async def get_item(item_id: str) -> dict | None:
    return await _fetch_one(f"SELECT * FROM {ITEMS_TABLE} WHERE id = :id", {"id": item_id}, table=ITEMS_TABLE)


async def get_user_item(user_id: str, item_id: str) -> dict | None:
    return await _fetch_one(
        f"SELECT * FROM {ITEMS_TABLE} WHERE id = :id AND user_id = :user_id",
        {"id": item_id, "user_id": user_id},
        table=ITEMS_TABLE,
    )


async def get_items(ids: list[str]) -> dict[str, dict]:
    return await _fetch_by_ids(ITEMS_TABLE, ids)


async def update_item(item_id: str, patch: dict) -> dict | None:
    clean = _normalize_item_payload(patch)
    await _update_row(ITEMS_TABLE, item_id, clean, ITEM_COLUMNS)
    return await get_item(item_id)


async def delete_item(item_id: str) -> None:
    await delete_descendant_for("Item", item_id)
    await _execute(f"DELETE FROM {NOTIFICATIONS_TABLE} WHERE item_id = :id", {"id": item_id})
    await _execute(
        f"UPDATE {ITEMS_TABLE} SET source_item_id = NULL WHERE source_item_id = :id",
        {"id": item_id},
    )
    await _execute(
        f"UPDATE {ITEMS_TABLE} SET recurring_next_item_id = NULL WHERE recurring_next_item_id = :id",
        {"id": item_id},
    )
    await _execute(f"DELETE FROM {ITEMS_TABLE} WHERE id = :id", {"id": item_id})


async def list_items_copied_from(source_item_id: str) -> list[dict]:
    return await _fetch_all(
        f"SELECT * FROM {ITEMS_TABLE} WHERE source_item_id = :source_item_id ORDER BY created_at ASC",
        {"source_item_id": source_item_id},
        table=ITEMS_TABLE,
    )


async def search_reusable_items(user_id: str, query: str = "", limit: int = 20) -> list[dict]:
    return await _fetch_all(
        f"""
        SELECT * FROM {ITEMS_TABLE}
        WHERE user_id = :user_id
          AND item_type = 'reusable'
          AND LOWER(title) LIKE :query
        ORDER BY title ASC
        LIMIT :limit
        """,
        {"user_id": user_id, "query": f"%{(query or '').strip().lower()}%", "limit": limit},
        table=ITEMS_TABLE,
    )


# --- lists -----------------------------------------------------------------

LIST_COLUMNS = {"title", "list_type", "visibility"}


def _validate_list_payload(payload: dict) -> dict:
    clean = dict(payload)
    if "list_type" in clean and clean["list_type"] not in LIST_TYPES:
        raise ValueError(f"Invalid list type: {clean['list_type']}")
    if "visibility" in clean and clean["visibility"] not in LIST_VISIBILITIES:
        raise ValueError(f"Invalid visibility: {clean['visibility']}")
    if "title" in clean:
        clean["title"] = str(clean["title"] or "").strip()
        if not clean["title"]:
            raise ValueError("Title cannot be empty")
    return clean


async def create_list(user_id: str, payload: dict) -> dict:
    clean = _validate_list_payload({"list_type": "private_list", "visibility": "read_only", **payload})
    now = utc_now_iso()
    record = {
        "id": _new_id(),
        "user_id": user_id,
        "slug": _new_id(),
        "created_at": now,
        "updated_at": now,
        **{key: value for key, value in clean.items() if key in LIST_COLUMNS},
    }
    await _insert(LISTS_TABLE, record)
    await ensure_descendant("List", record["id"])
    return await get_list(record["id"])


async def get_list(list_id: str) -> dict | None:
    return await _fetch_one(f"SELECT * FROM {LISTS_TABLE} WHERE id = :id", {"id": list_id})


async def get_user_list(user_id: str, list_id: str) -> dict | None:
    return await _fetch_one(
        f"SELECT * FROM {LISTS_TABLE} WHERE id = :id AND user_id = :user_id",
        {"id": list_id, "user_id": user_id},
    )


async def get_list_by_slug(slug: str) -> dict | None:
    return await _fetch_one(f"SELECT * FROM {LISTS_TABLE} WHERE slug = :slug", {"slug": slug})


async def list_lists(user_id: str) -> list[dict]:
    return await _fetch_all(
        f"SELECT * FROM {LISTS_TABLE} WHERE user_id = :user_id ORDER BY created_at DESC",
        {"user_id": user_id},
    )


async def update_list(list_id: str, patch: dict) -> dict | None:
    await _update_row(LISTS_TABLE, list_id, _validate_list_payload(patch), LIST_COLUMNS)
    return await get_list(list_id)


async def delete_list(list_id: str) -> None:
    await delete_descendant_for("List", list_id)
    await _execute(f"DELETE FROM {LISTS_TABLE} WHERE id = :id", {"id": list_id})


# --- notes -----------------------------------------------------------------

async def create_note(user_id: str, content: str) -> dict:
    content = str(content or "").strip()
    if not content:
        raise ValueError("Content cannot be empty")
    now = utc_now_iso()
    record = {"id": _new_id(), "user_id": user_id, "content": content, "created_at": now, "updated_at": now}
    await _insert(NOTES_TABLE, record)
    return record


async def get_user_note(user_id: str, note_id: str) -> dict | None:
    return await _fetch_one(
        f"SELECT * FROM {NOTES_TABLE} WHERE id = :id AND user_id = :user_id",
        {"id": note_id, "user_id": user_id},
    )


async def list_notes(user_id: str) -> list[dict]:
    return await _fetch_all(
        f"SELECT * FROM {NOTES_TABLE} WHERE user_id = :user_id ORDER BY updated_at DESC",
        {"user_id": user_id},
    )


async def update_note(note_id: str, content: str) -> None:
    content = str(content or "").strip()
    if not content:
        raise ValueError("Content cannot be empty")
    await _update_row(NOTES_TABLE, note_id, {"content": content}, {"content"})


async def delete_note(note_id: str) -> None:
    await _execute(
        f"DELETE FROM {NOTE_LINKS_TABLE} WHERE note_id = :id OR linked_note_id = :id",
        {"id": note_id},
    )
    await _execute(f"DELETE FROM {NOTES_TABLE} WHERE id = :id", {"id": note_id})


async def link_notes(note_id: str, linked_note_id: str) -> None:
    if note_id == linked_note_id:
        raise ValueError("A note cannot link to itself")
    await _execute(
        f"""
        INSERT INTO {NOTE_LINKS_TABLE} (note_id, linked_note_id, created_at)
        VALUES (:note_id, :linked_note_id, :now)
        ON CONFLICT(note_id, linked_note_id) DO NOTHING
        """,
        {"note_id": note_id, "linked_note_id": linked_note_id, "now": utc_now_iso()},
    )


async def unlink_notes(note_id: str, linked_note_id: str) -> None:
    await _execute(
        f"DELETE FROM {NOTE_LINKS_TABLE} WHERE note_id = :note_id AND linked_note_id = :linked_note_id",
        {"note_id": note_id, "linked_note_id": linked_note_id},
    )


async def list_linked_notes(note_id: str) -> list[dict]:
    return await _fetch_all(
        f"""
        SELECT n.* FROM {NOTES_TABLE} n
        JOIN {NOTE_LINKS_TABLE} l ON l.linked_note_id = n.id
        WHERE l.note_id = :note_id
        ORDER BY l.created_at ASC
        """,
        {"note_id": note_id},
    )


# --- checklists ------------------------------------------------------------

CHECKLIST_COLUMNS = {"template_id", "name", "description", "kind", "flow", "items_json", "metadata_json"}


def _normalize_checklist_payload(payload: dict) -> dict:
    clean = dict(payload)
    if "kind" in clean and clean["kind"] not in CHECKLIST_KINDS:
        raise ValueError(f"Invalid checklist kind: {clean['kind']}")
    if "flow" in clean and clean["flow"] not in CHECKLIST_FLOWS:
        raise ValueError(f"Invalid checklist flow: {clean['flow']}")
    for key in ("name", "description"):
        if key in clean:
            clean[key] = str(clean[key] or "").strip()
            if not clean[key]:
                raise ValueError(f"{key.title()} cannot be empty")
    if "items" in clean:
        clean["items_json"] = _encode_json(list(clean.pop("items") or []))
    if "metadata" in clean:
        clean["metadata_json"] = _encode_json(dict(clean.pop("metadata") or {}))
    return clean


async def create_checklist(user_id: str, payload: dict) -> dict:
    clean = _normalize_checklist_payload({"kind": "template", "flow": "sequential", "items": [], "metadata": {}, **payload})
    now = utc_now_iso()
    record = {
        "id": _new_id(),
        "user_id": user_id,
        "created_at": now,
        "updated_at": now,
        **{key: value for key, value in clean.items() if key in CHECKLIST_COLUMNS},
    }
    await _insert(CHECKLISTS_TABLE, record)
    return await get_checklist(record["id"])


async def get_checklist(checklist_id: str) -> dict | None:
    return await _fetch_one(
        f"SELECT * FROM {CHECKLISTS_TABLE} WHERE id = :id", {"id": checklist_id}, table=CHECKLISTS_TABLE
    )


async def get_user_checklist(user_id: str, checklist_id: str) -> dict | None:
    return await _fetch_one(
        f"SELECT * FROM {CHECKLISTS_TABLE} WHERE id = :id AND user_id = :user_id",
        {"id": checklist_id, "user_id": user_id},
        table=CHECKLISTS_TABLE,
    )


async def list_checklists(user_id: str, kind: str | None = None) -> list[dict]:
    if kind:
        return await _fetch_all(
            f"SELECT * FROM {CHECKLISTS_TABLE} WHERE user_id = :user_id AND kind = :kind ORDER BY created_at DESC",
            {"user_id": user_id, "kind": kind},
            table=CHECKLISTS_TABLE,
        )
    return await _fetch_all(
        f"SELECT * FROM {CHECKLISTS_TABLE} WHERE user_id = :user_id ORDER BY created_at DESC",
        {"user_id": user_id},
        table=CHECKLISTS_TABLE,
    )


async def update_checklist(checklist_id: str, patch: dict) -> dict | None:
    await _update_row(CHECKLISTS_TABLE, checklist_id, _normalize_checklist_payload(patch), CHECKLIST_COLUMNS)
    return await get_checklist(checklist_id)


async def delete_checklist(checklist_id: str) -> None:
    await _execute(f"DELETE FROM {CHECKLISTS_TABLE} WHERE id = :id", {"id": checklist_id})


# --- journals --------------------------------------------------------------

async def get_journal(journal_id: str) -> dict | None:
    return await _fetch_one(f"SELECT * FROM {JOURNALS_TABLE} WHERE id = :id", {"id": journal_id})


async def get_user_journal(user_id: str, journal_id: str) -> dict | None:
    return await _fetch_one(
        f"SELECT * FROM {JOURNALS_TABLE} WHERE id = :id AND user_id = :user_id",
        {"id": journal_id, "user_id": user_id},
    )


async def get_journal_by_date(user_id: str, day_iso: str) -> dict | None:
    return await _fetch_one(
        f"SELECT * FROM {JOURNALS_TABLE} WHERE user_id = :user_id AND date = :date",
        {"user_id": user_id, "date": day_iso},
    )


async def create_journal(user_id: str, day_iso: str) -> dict:
    now = utc_now_iso()
    await _execute(
        f"""
        INSERT INTO {JOURNALS_TABLE} (id, user_id, date, created_at, updated_at)
        VALUES (:id, :user_id, :date, :now, :now)
        ON CONFLICT(user_id, date) DO NOTHING
        """,
        {"id": _new_id(), "user_id": user_id, "date": day_iso, "now": now},
    )
    journal = await get_journal_by_date(user_id, day_iso)
    await ensure_descendant("Journal", journal["id"])
    return journal


async def list_journals(user_id: str, limit: int = 30) -> list[dict]:
    return await _fetch_all(
        f"SELECT * FROM {JOURNALS_TABLE} WHERE user_id = :user_id ORDER BY date DESC LIMIT :limit",
        {"user_id": user_id, "limit": limit},
    )


async def delete_journal(journal_id: str) -> None:
    prompts = await list_journal_prompts(journal_id)
    for prompt in prompts:
        await delete_descendant_for("JournalPrompt", prompt["id"])
    await _execute(f"DELETE FROM {JOURNAL_FRAGMENTS_TABLE} WHERE journal_id = :id", {"id": journal_id})
    await _execute(f"DELETE FROM {JOURNAL_PROMPTS_TABLE} WHERE journal_id = :id", {"id": journal_id})
    await delete_descendant_for("Journal", journal_id)
    await _execute(f"DELETE FROM {JOURNALS_TABLE} WHERE id = :id", {"id": journal_id})


async def create_journal_prompt(user_id: str, journal_id: str, prompt_text: str) -> dict:
    now = utc_now_iso()
    record = {
        "id": _new_id(),
        "user_id": user_id,
        "journal_id": journal_id,
        "prompt_text": prompt_text,
        "created_at": now,
        "updated_at": now,
    }
    await _insert(JOURNAL_PROMPTS_TABLE, record)
    await ensure_descendant("JournalPrompt", record["id"])
    return record


async def list_journal_prompts(journal_id: str) -> list[dict]:
    return await _fetch_all(
        f"SELECT * FROM {JOURNAL_PROMPTS_TABLE} WHERE journal_id = :journal_id ORDER BY created_at ASC",
        {"journal_id": journal_id},
    )


TEMPLATE_COLUMNS = {"prompt_text", "schedule_rule_json", "active"}


def _normalize_template_payload(payload: dict) -> dict:
    clean = dict(payload)
    if "prompt_text" in clean:
        clean["prompt_text"] = str(clean["prompt_text"] or "").strip()
        if not clean["prompt_text"]:
            raise ValueError("Prompt text cannot be empty")
    if "schedule_rule" in clean:
        clean["schedule_rule_json"] = _encode_json(dict(clean.pop("schedule_rule") or {}))
    if "active" in clean:
        clean["active"] = int(bool(clean["active"]))
    return clean


async def create_prompt_template(user_id: str, payload: dict) -> dict:
    clean = _normalize_template_payload({"active": True, "schedule_rule": {}, **payload})
    now = utc_now_iso()
    record = {
        "id": _new_id(),
        "user_id": user_id,
        "created_at": now,
        "updated_at": now,
        **{key: value for key, value in clean.items() if key in TEMPLATE_COLUMNS},
    }
    await _insert(JOURNAL_PROMPT_TEMPLATES_TABLE, record)
    return await get_prompt_template(user_id, record["id"])


async def get_prompt_template(user_id: str, template_id: str) -> dict | None:
    return await _fetch_one(
        f"SELECT * FROM {JOURNAL_PROMPT_TEMPLATES_TABLE} WHERE id = :id AND user_id = :user_id",
        {"id": template_id, "user_id": user_id},
        table=JOURNAL_PROMPT_TEMPLATES_TABLE,
    )


async def list_prompt_templates(user_id: str, active_only: bool = False) -> list[dict]:
    where = "user_id = :user_id AND active = 1" if active_only else "user_id = :user_id"
    return await _fetch_all(
        f"SELECT * FROM {JOURNAL_PROMPT_TEMPLATES_TABLE} WHERE {where} ORDER BY created_at ASC",
        {"user_id": user_id},
        table=JOURNAL_PROMPT_TEMPLATES_TABLE,
    )


async def update_prompt_template(user_id: str, template_id: str, patch: dict) -> dict | None:
    await _update_row(JOURNAL_PROMPT_TEMPLATES_TABLE, template_id, _normalize_template_payload(patch), TEMPLATE_COLUMNS)
    return await get_prompt_template(user_id, template_id)


async def delete_prompt_template(user_id: str, template_id: str) -> None:
    await _execute(
        f"DELETE FROM {JOURNAL_PROMPT_TEMPLATES_TABLE} WHERE id = :id AND user_id = :user_id",
        {"id": template_id, "user_id": user_id},
    )


FRAGMENT_COLUMNS = {"content", "encrypted_content", "content_iv", "journal_prompt_id"}


async def create_journal_fragment(user_id: str, journal_id: str, payload: dict) -> dict:
    now = utc_now_iso()
    record = {
        "id": _new_id(),
        "user_id": user_id,
        "journal_id": journal_id,
        "journal_prompt_id": payload.get("journal_prompt_id"),
        "content": payload.get("content"),
        "encrypted_content": payload.get("encrypted_content"),
        "content_iv": payload.get("content_iv"),
        "created_at": now,
        "updated_at": now,
    }
    await _insert(JOURNAL_FRAGMENTS_TABLE, record)
    return record


async def get_user_fragment(user_id: str, fragment_id: str) -> dict | None:
    return await _fetch_one(
        f"SELECT * FROM {JOURNAL_FRAGMENTS_TABLE} WHERE id = :id AND user_id = :user_id",
        {"id": fragment_id, "user_id": user_id},
    )


async def list_journal_fragments(journal_id: str) -> list[dict]:
    return await _fetch_all(
        f"SELECT * FROM {JOURNAL_FRAGMENTS_TABLE} WHERE journal_id = :journal_id ORDER BY created_at ASC",
        {"journal_id": journal_id},
    )


async def list_user_fragments(user_id: str) -> list[dict]:
    return await _fetch_all(
        f"SELECT * FROM {JOURNAL_FRAGMENTS_TABLE} WHERE user_id = :user_id ORDER BY created_at ASC",
        {"user_id": user_id},
    )


async def update_journal_fragment(fragment_id: str, patch: dict) -> None:
    await _update_row(JOURNAL_FRAGMENTS_TABLE, fragment_id, patch, FRAGMENT_COLUMNS)


async def delete_journal_fragment(fragment_id: str) -> None:
    await _execute(f"DELETE FROM {JOURNAL_FRAGMENTS_TABLE} WHERE id = :id", {"id": fragment_id})


# --- journal sessions ------------------------------------------------------

async def create_journal_session(
    user_id: str, token_hash: str, encryption_key_enc: str, expires_at: str
) -> None:
    now = utc_now_iso()
    await _insert(
        JOURNAL_SESSIONS_TABLE,
        {
            "token_hash": token_hash,
            "user_id": user_id,
            "encryption_key_enc": encryption_key_enc,
            "last_activity_at": now,
            "expires_at": expires_at,
            "created_at": now,
        },
    )


async def get_journal_session(token_hash: str) -> dict | None:
    return await _fetch_one(
        f"SELECT * FROM {JOURNAL_SESSIONS_TABLE} WHERE token_hash = :token_hash",
        {"token_hash": token_hash},
    )


async def touch_journal_session(token_hash: str) -> None:
    await _execute(
        f"UPDATE {JOURNAL_SESSIONS_TABLE} SET last_activity_at = :now WHERE token_hash = :token_hash",
        {"now": utc_now_iso(), "token_hash": token_hash},
    )


async def delete_journal_session(token_hash: str) -> None:
    await _execute(
        f"DELETE FROM {JOURNAL_SESSIONS_TABLE} WHERE token_hash = :token_hash",
        {"token_hash": token_hash},
    )


async def delete_user_journal_sessions(user_id: str) -> int:
    return await _execute(
        f"DELETE FROM {JOURNAL_SESSIONS_TABLE} WHERE user_id = :user_id",
        {"user_id": user_id},
    )


async def create_protection_request(user_id: str, token_hash: str, salt: str, password_enc: str, expires_at: str) -> None:
    await _execute(
        f"DELETE FROM {JOURNAL_PROTECTION_REQUESTS_TABLE} WHERE user_id = :user_id",
        {"user_id": user_id},
    )
    await _insert(
        JOURNAL_PROTECTION_REQUESTS_TABLE,
        {
            "token_hash": token_hash,
            "user_id": user_id,
            "salt": salt,
            "password_enc": password_enc,
            "expires_at": expires_at,
            "created_at": utc_now_iso(),
        },
    )


async def get_protection_request(user_id: str, token_hash: str) -> dict | None:
    return await _fetch_one(
        f"""
        SELECT * FROM {JOURNAL_PROTECTION_REQUESTS_TABLE}
        WHERE token_hash = :token_hash AND user_id = :user_id
        """,
        {"token_hash": token_hash, "user_id": user_id},
    )


async def delete_protection_requests(user_id: str) -> None:
    await _execute(
        f"DELETE FROM {JOURNAL_PROTECTION_REQUESTS_TABLE} WHERE user_id = :user_id",
        {"user_id": user_id},
    )


# --- notifications ---------------------------------------------------------

NOTIFICATION_STATUSES = ("pending", "sent", "read", "dismissed")
NOTIFICATION_CHANNELS = ("push", "in_app")


async def create_notification(user_id: str, item_id: str, remind_at: str, channels: list[str]) -> dict:
    now = utc_now_iso()
    record = {
        "id": _new_id(),
        "user_id": user_id,
        "item_id": item_id,
        "remind_at": remind_at,
        "status": "pending",
        "channels_json": _encode_json(channels),
        "created_at": now,
        "updated_at": now,
    }
    await _insert(NOTIFICATIONS_TABLE, record)
    return await get_notification(record["id"])


async def get_notification(notification_id: str) -> dict | None:
    return await _fetch_one(
        f"SELECT * FROM {NOTIFICATIONS_TABLE} WHERE id = :id", {"id": notification_id}, table=NOTIFICATIONS_TABLE
    )


async def get_user_notification(user_id: str, notification_id: str) -> dict | None:
    return await _fetch_one(
        f"SELECT * FROM {NOTIFICATIONS_TABLE} WHERE id = :id AND user_id = :user_id",
        {"id": notification_id, "user_id": user_id},
        table=NOTIFICATIONS_TABLE,
    )


async def list_notifications(user_id: str, status: str | None = None, limit: int = 50) -> list[dict]:
    params = {"user_id": user_id, "limit": limit}
    where = "user_id = :user_id"
    if status:
        where += " AND status = :status"
        params["status"] = status
    return await _fetch_all(
        f"SELECT * FROM {NOTIFICATIONS_TABLE} WHERE {where} ORDER BY remind_at DESC LIMIT :limit",
        params,
        table=NOTIFICATIONS_TABLE,
    )


async def list_item_notifications(item_id: str) -> list[dict]:
    return await _fetch_all(
        f"SELECT * FROM {NOTIFICATIONS_TABLE} WHERE item_id = :item_id ORDER BY remind_at ASC",
        {"item_id": item_id},
        table=NOTIFICATIONS_TABLE,
    )


async def list_due_notifications(now_iso: str, limit: int = 100) -> list[dict]:
    return await _fetch_all(
        f"""
        SELECT * FROM {NOTIFICATIONS_TABLE}
        WHERE status = 'pending' AND remind_at <= :now
        ORDER BY remind_at ASC
        LIMIT :limit
        """,
        {"now": now_iso, "limit": limit},
        table=NOTIFICATIONS_TABLE,
    )


async def set_notification_status(notification_id: str, status: str, timestamp_column: str | None = None) -> None:
    if status not in NOTIFICATION_STATUSES:
        raise ValueError(f"Invalid notification status: {status}")
    now = utc_now_iso()
    extra = f", {timestamp_column} = :now" if timestamp_column in {"sent_at", "read_at"} else ""
    await _execute(
        f"UPDATE {NOTIFICATIONS_TABLE} SET status = :status, updated_at = :now{extra} WHERE id = :id",
        {"status": status, "now": now, "id": notification_id},
    )


async def mark_all_notifications_read(user_id: str) -> int:
    now = utc_now_iso()
    return await _execute(
        f"""
        UPDATE {NOTIFICATIONS_TABLE}
        SET status = 'read', read_at = :now, updated_at = :now
        WHERE user_id = :user_id AND status = 'sent'
        """,
        {"user_id": user_id, "now": now},
    )


async def delete_notification(notification_id: str) -> None:
    await _execute(f"DELETE FROM {NOTIFICATIONS_TABLE} WHERE id = :id", {"id": notification_id})


async def add_notification_log(user_id: str, notification_id: str | None, channel: str, status: str, message: str) -> None:
    await _insert(
        NOTIFICATION_LOGS_TABLE,
        {
            "id": _new_id(),
            "user_id": user_id,
            "notification_id": notification_id,
            "channel": channel,
            "status": status,
            "message": (message or "")[:500],
            "created_at": utc_now_iso(),
        },
    )


async def list_notification_logs(notification_id: str) -> list[dict]:
    return await _fetch_all(
        f"SELECT * FROM {NOTIFICATION_LOGS_TABLE} WHERE notification_id = :id ORDER BY created_at ASC",
        {"id": notification_id},
    )


# --- jobs ------------------------------------------------------------------

async def enqueue_job(user_id: str | None, kind: str, payload_enc: str | None = None) -> dict:
    now = utc_now_iso()
    row = {
        "id": _new_id(),
        "user_id": user_id,
        "kind": kind,
        "payload_enc": payload_enc,
        "status": "pending",
        "attempts": 0,
        "next_retry_at": None,
        "last_error": None,
        "created_at": now,
        "updated_at": now,
    }
    await _insert(JOBS_TABLE, row)
    return row


async def list_pending_jobs(limit: int = 25) -> list[dict]:
    return await _fetch_all(
        f"""
        SELECT * FROM {JOBS_TABLE}
        WHERE status = 'pending'
          AND (next_retry_at IS NULL OR next_retry_at <= :now)
        ORDER BY created_at ASC
        LIMIT :limit
        """,
        {"now": utc_now_iso(), "limit": limit},
    )


async def get_job(job_id: str) -> dict | None:
    return await _fetch_one(f"SELECT * FROM {JOBS_TABLE} WHERE id = :id", {"id": job_id})


async def mark_job_done(job_id: str) -> None:
    await _execute(
        f"UPDATE {JOBS_TABLE} SET status = 'done', payload_enc = NULL, updated_at = :updated_at WHERE id = :id",
        {"id": job_id, "updated_at": utc_now_iso()},
    )


async def mark_job_error(job_id: str, attempts: int, next_retry_at: str | None, error: str, status: str = "pending") -> None:
    await _execute(
        f"""
        UPDATE {JOBS_TABLE}
        SET status = :status,
            attempts = :attempts,
            next_retry_at = :next_retry_at,
            last_error = :last_error,
            updated_at = :updated_at
        WHERE id = :id
        """,
        {
            "id": job_id,
            "status": status,
            "attempts": attempts,
            "next_retry_at": next_retry_at,
            "last_error": error[:500],
            "updated_at": utc_now_iso(),
        },
    )


# --- accounting ------------------------------------------------------------

INVOICE_STATES = ("draft", "sent", "paid")
CURRENCIES = ("CAD", "EUR", "USD")


async def create_customer(user_id: str, payload: dict) -> dict:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise ValueError("Name cannot be empty")
    now = utc_now_iso()
    record = {
        "id": _new_id(),
        "user_id": user_id,
        "name": name,
        "email": payload.get("email"),
        "address": payload.get("address"),
        "created_at": now,
        "updated_at": now,
    }
    await _insert(CUSTOMERS_TABLE, record)
    return record


async def get_customer(user_id: str, customer_id: str) -> dict | None:
    return await _fetch_one(
        f"SELECT * FROM {CUSTOMERS_TABLE} WHERE id = :id AND user_id = :user_id",
        {"id": customer_id, "user_id": user_id},
    )


async def list_customers(user_id: str) -> list[dict]:
    return await _fetch_all(
        f"SELECT * FROM {CUSTOMERS_TABLE} WHERE user_id = :user_id ORDER BY name ASC",
        {"user_id": user_id},
    )


async def create_accounting_item(user_id: str, payload: dict) -> dict:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise ValueError("Name cannot be empty")
    unit_price = int(payload.get("unit_price") or 0)
    if unit_price < 0:
        raise ValueError("Unit price cannot be negative")
    now = utc_now_iso()
    record = {
        "id": _new_id(),
        "user_id": user_id,
        "name": name,
        "description": payload.get("description"),
        "kind": payload.get("kind"),
        "unit": payload.get("unit") or "unit",
        "unit_price": unit_price,
        "created_at": now,
        "updated_at": now,
    }
    await _insert(ACCOUNTING_ITEMS_TABLE, record)
    return record


async def get_accounting_item(user_id: str, accounting_item_id: str) -> dict | None:
    return await _fetch_one(
        f"SELECT * FROM {ACCOUNTING_ITEMS_TABLE} WHERE id = :id AND user_id = :user_id",
        {"id": accounting_item_id, "user_id": user_id},
    )


async def list_accounting_items(user_id: str) -> list[dict]:
    return await _fetch_all(
        f"SELECT * FROM {ACCOUNTING_ITEMS_TABLE} WHERE user_id = :user_id ORDER BY name ASC",
        {"user_id": user_id},
    )


async def create_tax_bracket(user_id: str, payload: dict) -> dict:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise ValueError("Name cannot be empty")
    existing = await _fetch_one(
        f"SELECT id FROM {TAX_BRACKETS_TABLE} WHERE user_id = :user_id AND LOWER(name) = :name",
        {"user_id": user_id, "name": name.lower()},
    )
    if existing:
        raise ValueError("Tax bracket name already taken")
    now = utc_now_iso()
    record = {
        "id": _new_id(),
        "user_id": user_id,
        "name": name,
        "percentage": str(payload.get("percentage")),
        "legal_reference": payload.get("legal_reference"),
        "created_at": now,
        "updated_at": now,
    }
    await _insert(TAX_BRACKETS_TABLE, record)
    return record


async def get_tax_bracket(user_id: str, tax_bracket_id: str) -> dict | None:
    return await _fetch_one(
        f"SELECT * FROM {TAX_BRACKETS_TABLE} WHERE id = :id AND user_id = :user_id",
        {"id": tax_bracket_id, "user_id": user_id},
    )


async def list_tax_brackets(user_id: str) -> list[dict]:
    return await _fetch_all(
        f"SELECT * FROM {TAX_BRACKETS_TABLE} WHERE user_id = :user_id ORDER BY name ASC",
        {"user_id": user_id},
    )


async def max_invoice_number(user_id: str, year: int) -> int:
    row = await _fetch_one(
        f"SELECT MAX(number) AS max_number FROM {INVOICES_TABLE} WHERE user_id = :user_id AND year = :year",
        {"user_id": user_id, "year": year},
    )
    return int((row or {}).get("max_number") or 0)


INVOICE_COLUMNS = {"state", "issued_at", "due_at", "paid_at", "subtotal", "discount", "tax", "total", "metadata_json"}


async def create_invoice(user_id: str, record: dict, lines: list[dict]) -> dict:
    now = utc_now_iso()
    invoice = {
        "id": _new_id(),
        "user_id": user_id,
        "created_at": now,
        "updated_at": now,
        **{key: value for key, value in record.items() if key != "metadata"},
        "metadata_json": _encode_json(record.get("metadata") or {}),
    }
    async with _session(commit=True) as session:
        columns = list(invoice.keys())
        await session.execute(
            sql_text(
                f"INSERT INTO {INVOICES_TABLE} ({', '.join(columns)}) "
                f"VALUES ({', '.join(':' + col for col in columns)})"
            ),
            invoice,
        )
        for position, line in enumerate(lines):
            row = {
                "id": _new_id(),
                "user_id": user_id,
                "invoice_id": invoice["id"],
                "position": position,
                "created_at": now,
                **line,
            }
            line_columns = list(row.keys())
            await session.execute(
                sql_text(
                    f"INSERT INTO {INVOICE_ITEMS_TABLE} ({', '.join(line_columns)}) "
                    f"VALUES ({', '.join(':' + col for col in line_columns)})"
                ),
                row,
            )
    return await get_invoice(user_id, invoice["id"])


async def get_invoice(user_id: str, invoice_id: str) -> dict | None:
    invoice = await _fetch_one(
        f"SELECT * FROM {INVOICES_TABLE} WHERE id = :id AND user_id = :user_id",
        {"id": invoice_id, "user_id": user_id},
        table=INVOICES_TABLE,
    )
    if not invoice:
        return None
    invoice["items"] = await _fetch_all(
        f"SELECT * FROM {INVOICE_ITEMS_TABLE} WHERE invoice_id = :id ORDER BY position ASC",
        {"id": invoice_id},
    )
    return invoice


async def list_invoices(user_id: str, year: int | None = None) -> list[dict]:
    params = {"user_id": user_id}
    where = "user_id = :user_id"
    if year:
        where += " AND year = :year"
        params["year"] = year
    return await _fetch_all(
        f"SELECT * FROM {INVOICES_TABLE} WHERE {where} ORDER BY year DESC, number DESC",
        params,
        table=INVOICES_TABLE,
    )


async def update_invoice(user_id: str, invoice_id: str, patch: dict) -> dict | None:
    clean = dict(patch)
    if "metadata" in clean:
        clean["metadata_json"] = _encode_json(clean.pop("metadata") or {})
    if "state" in clean and clean["state"] not in INVOICE_STATES:
        raise ValueError(f"Invalid invoice state: {clean['state']}")
    await _update_row(INVOICES_TABLE, invoice_id, clean, INVOICE_COLUMNS)
    return await get_invoice(user_id, invoice_id)


async def delete_invoice(invoice_id: str) -> None:
    await _execute(f"DELETE FROM {INVOICE_ITEMS_TABLE} WHERE invoice_id = :id", {"id": invoice_id})
    await _execute(f"DELETE FROM {INVOICES_TABLE} WHERE id = :id", {"id": invoice_id})
