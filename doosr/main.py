from __future__ import annotations

from fastapi import FastAPI

from doosr.db_init import init_db
from doosr.error_handlers import register_error_handlers
from doosr.logging_config import configure_logging
from doosr.routes import (
    accounting,
    checklists,
    days,
    fixed_calendar,
    items,
    jobs,
    journal_protection,
    journals,
    lists,
    notes,
    notifications,
    settings,
)


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Doosr API", version="0.1.0")

    app.include_router(days.router)
    app.include_router(items.router)
    app.include_router(lists.router)
    app.include_router(notes.router)
    app.include_router(checklists.router)
    app.include_router(journals.router)
    app.include_router(journal_protection.router)
    app.include_router(fixed_calendar.router)
    app.include_router(notifications.router)
    app.include_router(accounting.router)
    app.include_router(settings.router)
    app.include_router(jobs.router)

    register_error_handlers(app)

    @app.on_event("startup")
    async def _startup():
        await init_db()

    @app.get("/health")
    async def health():
        return {"ok": True}

    return app


app = create_app()
