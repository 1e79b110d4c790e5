from __future__ import annotations

from sqlalchemy import text as sql_text

from doosr.db import get_engine


USERS_TABLE = "users"
DAYS_TABLE = "days"
DESCENDANTS_TABLE = "descendants"
ITEMS_TABLE = "items"
LISTS_TABLE = "lists"
NOTES_TABLE = "notes"
NOTE_LINKS_TABLE = "note_links"
CHECKLISTS_TABLE = "checklists"
JOURNALS_TABLE = "journals"
JOURNAL_PROMPTS_TABLE = "journal_prompts"
JOURNAL_PROMPT_TEMPLATES_TABLE = "journal_prompt_templates"
JOURNAL_FRAGMENTS_TABLE = "journal_fragments"
JOURNAL_SESSIONS_TABLE = "journal_sessions"
JOURNAL_PROTECTION_REQUESTS_TABLE = "journal_protection_requests"
NOTIFICATIONS_TABLE = "notifications"
NOTIFICATION_LOGS_TABLE = "notification_logs"
JOBS_TABLE = "jobs"
CUSTOMERS_TABLE = "customers"
ACCOUNTING_ITEMS_TABLE = "accounting_items"
TAX_BRACKETS_TABLE = "tax_brackets"
INVOICES_TABLE = "invoices"
INVOICE_ITEMS_TABLE = "invoice_items"


TABLE_DDL = [
    f"""
    CREATE TABLE IF NOT EXISTS {USERS_TABLE} (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        name TEXT,
        settings_json TEXT NOT NULL DEFAULT '{{}}',
        journal_protection_enabled INTEGER DEFAULT 0,
        journal_password_digest TEXT,
        encrypted_seed_phrase TEXT,
        journal_encryption_salt TEXT,
        journal_session_timeout_minutes INTEGER DEFAULT 30,
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {DAYS_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        date TEXT NOT NULL,
        state TEXT NOT NULL DEFAULT 'open',
        closed_at TEXT,
        reopened_at TEXT,
        imported_from_day_id TEXT,
        imported_to_day_id TEXT,
        imported_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT,
        UNIQUE (user_id, date)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {DESCENDANTS_TABLE} (
        id TEXT PRIMARY KEY,
        descendable_type TEXT NOT NULL,
        descendable_id TEXT NOT NULL,
        active_items TEXT NOT NULL DEFAULT '[]',
        inactive_items TEXT NOT NULL DEFAULT '[]',
        created_at TEXT NOT NULL,
        updated_at TEXT,
        UNIQUE (descendable_type, descendable_id)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {ITEMS_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        item_type TEXT NOT NULL DEFAULT 'completable',
        state TEXT NOT NULL DEFAULT 'todo',
        extra_data TEXT NOT NULL DEFAULT '{{}}',
        recurrence_rule TEXT,
        recurring_next_item_id TEXT,
        source_item_id TEXT,
        done_at TEXT,
        dropped_at TEXT,
        deferred_at TEXT,
        deferred_to TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {LISTS_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        slug TEXT NOT NULL UNIQUE,
        list_type TEXT NOT NULL DEFAULT 'private_list',
        visibility TEXT NOT NULL DEFAULT 'read_only',
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {NOTES_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {NOTE_LINKS_TABLE} (
        note_id TEXT NOT NULL,
        linked_note_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        PRIMARY KEY (note_id, linked_note_id)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {CHECKLISTS_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        template_id TEXT,
        name TEXT NOT NULL,
        description TEXT NOT NULL,
        kind TEXT NOT NULL DEFAULT 'template',
        flow TEXT NOT NULL DEFAULT 'sequential',
        items_json TEXT,
        metadata_json TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {JOURNALS_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        date TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT,
        UNIQUE (user_id, date)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {JOURNAL_PROMPTS_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        journal_id TEXT NOT NULL,
        prompt_text TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {JOURNAL_PROMPT_TEMPLATES_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        prompt_text TEXT NOT NULL,
        schedule_rule_json TEXT,
        active INTEGER DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {JOURNAL_FRAGMENTS_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        journal_id TEXT NOT NULL,
        journal_prompt_id TEXT,
        content TEXT,
        encrypted_content TEXT,
        content_iv TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {JOURNAL_SESSIONS_TABLE} (
        token_hash TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        encryption_key_enc TEXT NOT NULL,
        last_activity_at TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {JOURNAL_PROTECTION_REQUESTS_TABLE} (
        token_hash TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        salt TEXT NOT NULL,
        password_enc TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {NOTIFICATIONS_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        item_id TEXT NOT NULL,
        remind_at TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        channels_json TEXT NOT NULL DEFAULT '[]',
        sent_at TEXT,
        read_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {NOTIFICATION_LOGS_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        notification_id TEXT,
        channel TEXT NOT NULL,
        status TEXT NOT NULL,
        message TEXT,
        created_at TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {JOBS_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT,
        kind TEXT NOT NULL,
        payload_enc TEXT,
        status TEXT NOT NULL DEFAULT 'pending',
        attempts INTEGER DEFAULT 0,
        next_retry_at TEXT,
        last_error TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {CUSTOMERS_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        email TEXT,
        address TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {ACCOUNTING_ITEMS_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        description TEXT,
        kind TEXT,
        unit TEXT NOT NULL DEFAULT 'unit',
        unit_price INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {TAX_BRACKETS_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        percentage TEXT NOT NULL,
        legal_reference TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT,
        UNIQUE (user_id, name)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {INVOICES_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        customer_id TEXT NOT NULL,
        number INTEGER NOT NULL,
        year INTEGER NOT NULL,
        display_number TEXT NOT NULL,
        state TEXT NOT NULL DEFAULT 'draft',
        currency TEXT NOT NULL DEFAULT 'EUR',
        issued_at TEXT,
        due_at TEXT,
        paid_at TEXT,
        subtotal INTEGER DEFAULT 0,
        discount INTEGER DEFAULT 0,
        tax INTEGER DEFAULT 0,
        total INTEGER DEFAULT 0,
        metadata_json TEXT NOT NULL DEFAULT '{{}}',
        created_at TEXT NOT NULL,
        updated_at TEXT,
        UNIQUE (user_id, year, number)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {INVOICE_ITEMS_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        invoice_id TEXT NOT NULL,
        accounting_item_id TEXT NOT NULL,
        tax_bracket_id TEXT NOT NULL,
        position INTEGER DEFAULT 0,
        description TEXT NOT NULL,
        quantity TEXT NOT NULL,
        unit TEXT NOT NULL,
        unit_price INTEGER NOT NULL,
        subtotal INTEGER NOT NULL,
        discount_rate TEXT NOT NULL DEFAULT '0',
        discount_amount INTEGER NOT NULL DEFAULT 0,
        tax_rate TEXT NOT NULL,
        tax_amount INTEGER NOT NULL,
        amount INTEGER NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
]


async def init_db():
    engine = get_engine()
    async with engine.begin() as conn:
        for ddl in TABLE_DDL:
            await conn.execute(sql_text(ddl))

    async def ensure_index(index_sql: str) -> None:
        try:
            async with engine.begin() as conn:
                await conn.execute(sql_text(index_sql))
        except Exception:
            return

    await ensure_index(f"CREATE INDEX IF NOT EXISTS idx_{DAYS_TABLE}_user_state ON {DAYS_TABLE} (user_id, state, date)")
    await ensure_index(f"CREATE INDEX IF NOT EXISTS idx_{ITEMS_TABLE}_user ON {ITEMS_TABLE} (user_id, item_type, state)")
    await ensure_index(f"CREATE INDEX IF NOT EXISTS idx_{ITEMS_TABLE}_source ON {ITEMS_TABLE} (source_item_id)")
    await ensure_index(
        f"CREATE INDEX IF NOT EXISTS idx_{JOURNAL_FRAGMENTS_TABLE}_journal "
        f"ON {JOURNAL_FRAGMENTS_TABLE} (user_id, journal_id)"
    )
    await ensure_index(
        f"CREATE INDEX IF NOT EXISTS idx_{NOTIFICATIONS_TABLE}_due "
        f"ON {NOTIFICATIONS_TABLE} (status, remind_at)"
    )
    await ensure_index(
        f"CREATE INDEX IF NOT EXISTS idx_{JOBS_TABLE}_status ON {JOBS_TABLE} (status, next_retry_at)"
    )
    await ensure_index(
        f"CREATE INDEX IF NOT EXISTS idx_{INVOICES_TABLE}_user_year ON {INVOICES_TABLE} (user_id, year, number)"
    )
