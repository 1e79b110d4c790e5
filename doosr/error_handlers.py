from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from doosr.errors import NotFoundError
from doosr.services.journal_encryption import DecryptionError
from doosr.services.journal_protection import JournalLockedError
from doosr.services.mnemonic import InvalidMnemonicError

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Map service exceptions onto HTTP responses."""

    @app.exception_handler(JournalLockedError)
    async def _journal_locked(request: Request, exc: JournalLockedError):
        return JSONResponse(status_code=status.HTTP_423_LOCKED, content={"detail": str(exc) or "Journal is locked"})

    @app.exception_handler(InvalidMnemonicError)
    async def _invalid_mnemonic(request: Request, exc: InvalidMnemonicError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})

    @app.exception_handler(DecryptionError)
    async def _decryption_failed(request: Request, exc: DecryptionError):
        logger.warning("Decryption failed on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": "Could not decrypt data"})

    @app.exception_handler(ValueError)
    async def _value_error(request: Request, exc: ValueError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        detail = exc.args[0] if exc.args else "Not found"
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": detail})

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
        errors = [
            {"field": ".".join(str(part) for part in error.get("loc", [])), "message": error.get("msg")}
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "Invalid request", "errors": errors},
        )

    @app.exception_handler(Exception)
    async def _unhandled_exception(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": "Internal error"})
