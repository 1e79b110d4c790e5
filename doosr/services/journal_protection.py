from __future__ import annotations

import hashlib
import json
import logging
import secrets
from datetime import datetime, timedelta

import bcrypt

from doosr import repositories
from doosr.clock import utc_now
from doosr.services import journal_encryption, mnemonic
from doosr.services.journal_encryption import DecryptionError
from doosr.settings import get_settings

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
MIN_SESSION_TIMEOUT = 5
MAX_SESSION_TIMEOUT = 1440
DEFAULT_SESSION_TIMEOUT = 30
PROTECTION_REQUEST_TTL = timedelta(minutes=30)

JOB_BULK_ENCRYPT = "journal_bulk_encrypt"
JOB_BULK_DECRYPT = "journal_bulk_decrypt"
JOB_BULK_REENCRYPT = "journal_bulk_reencrypt"


class JournalLockedError(Exception):
    pass


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def _password_matches(user: dict, password: str | None) -> bool:
    digest = user.get("journal_password_digest")
    if not digest or not password:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), digest.encode("utf-8"))
    except ValueError:
        return False


def _validate_new_password(password: str | None, confirmation: str | None, label: str = "Password") -> None:
    if not password:
        raise ValueError(f"{label} is required")
    if password != confirmation:
        raise ValueError("Passwords do not match")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"{label} must be at least {MIN_PASSWORD_LENGTH} characters")


def _require_enabled(user: dict) -> None:
    if not user.get("journal_protection_enabled"):
        raise ValueError("Journal protection is not enabled")


def _verify_password(user: dict, password: str | None, label: str = "Password") -> None:
    if not password:
        raise ValueError(f"{label} is required")
    if not _password_matches(user, password):
        raise ValueError(f"{label} is incorrect")


def _seed_for_password(user: dict, password: str) -> str:
    salt = user["journal_encryption_salt"]
    password_key = journal_encryption.derive_key(password, salt)
    return journal_encryption.decrypt_seed(user["encrypted_seed_phrase"], password_key)


def journal_key_for_seed(seed_phrase: str, salt: str) -> bytes:
    return journal_encryption.derive_key(seed_phrase, salt)


def _expired(timestamp: str | None) -> bool:
    if not timestamp:
        return True
    return datetime.fromisoformat(timestamp) <= utc_now()


async def _enqueue_key_job(user_id: str, kind: str, **keys: bytes) -> None:
    payload = {name: journal_encryption.key_to_text(value) for name, value in keys.items()}
    await repositories.enqueue_job(user_id, kind, journal_encryption.seal(json.dumps(payload)))


async def status(user: dict) -> dict:
    return {
        "enabled": bool(user.get("journal_protection_enabled")),
        "session_timeout_minutes": int(user.get("journal_session_timeout_minutes") or DEFAULT_SESSION_TIMEOUT),
    }


async def generate_seed(user: dict, password: str | None, confirmation: str | None) -> dict:
    """First enabling step: hand out a seed phrase and a token to confirm it with."""
    if user.get("journal_protection_enabled"):
        raise ValueError("Journal protection is already enabled")
    _validate_new_password(password, confirmation)
    salt = journal_encryption.generate_salt()
    seed_phrase = mnemonic.generate()
    token = secrets.token_urlsafe(32)
    await repositories.create_protection_request(
        user["id"],
        _hash_token(token),
        salt,
        journal_encryption.seal(password),
        (utc_now() + PROTECTION_REQUEST_TTL).isoformat(),
    )
    return {"seed_phrase": seed_phrase, "token": token}


async def confirm_seed(user: dict, token: str | None, seed_phrase: str | None) -> dict:
    request = await repositories.get_protection_request(user["id"], _hash_token(token or ""))
    if not request or _expired(request.get("expires_at")):
        raise ValueError("Session expired. Please try again.")
    if not seed_phrase or not mnemonic.validate(seed_phrase):
        raise ValueError("Invalid seed phrase.")

    seed_phrase = mnemonic.normalize(seed_phrase)
    salt = request["salt"]
    password = journal_encryption.unseal(request["password_enc"])
    encryption_key = journal_key_for_seed(seed_phrase, salt)
    password_key = journal_encryption.derive_key(password, salt)

    updated = await repositories.update_user(
        user["id"],
        {
            "journal_encryption_salt": salt,
            "journal_password_digest": _hash_password(password),
            "encrypted_seed_phrase": journal_encryption.encrypt_seed(seed_phrase, password_key),
            "journal_protection_enabled": True,
        },
    )
    await repositories.delete_protection_requests(user["id"])
    await _enqueue_key_job(user["id"], JOB_BULK_ENCRYPT, key=encryption_key)
    logger.info("Journal protection enabled for user %s", user["id"])
    return updated


async def unlock(user: dict, password: str | None) -> dict:
    if not password:
        raise ValueError("Password is required")
    _require_enabled(user)
    if not _password_matches(user, password):
        raise ValueError("Invalid password")

    seed_phrase = _seed_for_password(user, password)
    encryption_key = journal_key_for_seed(seed_phrase, user["journal_encryption_salt"])
    token = secrets.token_urlsafe(32)
    settings = get_settings()
    expires_at = (utc_now() + timedelta(hours=settings.journal_session_ttl_hours)).isoformat()
    await repositories.create_journal_session(
        user["id"],
        _hash_token(token),
        journal_encryption.seal(journal_encryption.key_to_text(encryption_key)),
        expires_at,
    )
    return {"token": token, "expires_at": expires_at}


async def resolve_key(user: dict, token: str | None) -> bytes:
    """Journal key for an unlocked session; raises JournalLockedError otherwise."""
    if not token:
        raise JournalLockedError("Journal is locked")
    token_hash = _hash_token(token)
    session = await repositories.get_journal_session(token_hash)
    if not session or session["user_id"] != user["id"]:
        raise JournalLockedError("Journal is locked")
    if _expired(session.get("expires_at")):
        await repositories.delete_journal_session(token_hash)
        raise JournalLockedError("Journal session expired")

    timeout = int(user.get("journal_session_timeout_minutes") or DEFAULT_SESSION_TIMEOUT)
    idle_deadline = datetime.fromisoformat(session["last_activity_at"]) + timedelta(minutes=timeout)
    if idle_deadline <= utc_now():
        await repositories.delete_journal_session(token_hash)
        raise JournalLockedError("Journal session timed out")

    await repositories.touch_journal_session(token_hash)
    return journal_encryption.key_from_text(journal_encryption.unseal(session["encryption_key_enc"]))


async def optional_key(user: dict, token: str | None) -> bytes | None:
    if not user.get("journal_protection_enabled") or not token:
        return None
    try:
        return await resolve_key(user, token)
    except JournalLockedError:
        return None


async def lock(token: str | None) -> None:
    if token:
        await repositories.delete_journal_session(_hash_token(token))


async def change_password(
    user: dict, current_password: str | None, new_password: str | None, confirmation: str | None
) -> dict:
    _require_enabled(user)
    _verify_password(user, current_password, label="Current password")
    _validate_new_password(new_password, confirmation, label="New password")

    seed_phrase = _seed_for_password(user, current_password)
    new_password_key = journal_encryption.derive_key(new_password, user["journal_encryption_salt"])
    updated = await repositories.update_user(
        user["id"],
        {
            "journal_password_digest": _hash_password(new_password),
            "encrypted_seed_phrase": journal_encryption.encrypt_seed(seed_phrase, new_password_key),
        },
    )
    await repositories.delete_user_journal_sessions(user["id"])
    return updated


async def disable(user: dict, password: str | None) -> dict:
    _require_enabled(user)
    _verify_password(user, password)

    seed_phrase = _seed_for_password(user, password)
    encryption_key = journal_key_for_seed(seed_phrase, user["journal_encryption_salt"])
    await _enqueue_key_job(user["id"], JOB_BULK_DECRYPT, key=encryption_key)
    updated = await repositories.update_user(
        user["id"],
        {
            "journal_password_digest": None,
            "encrypted_seed_phrase": None,
            "journal_encryption_salt": None,
            "journal_protection_enabled": False,
        },
    )
    await repositories.delete_user_journal_sessions(user["id"])
    logger.info("Journal protection disabled for user %s", user["id"])
    return updated


async def _check_seed_against_fragments(user_id: str, encryption_key: bytes) -> None:
    for fragment in await repositories.list_user_fragments(user_id):
        if fragment.get("encrypted_content"):
            journal_encryption.decrypt_fragment_content(fragment, encryption_key)
            return


async def recover(user: dict, seed_phrase: str | None, password: str | None, confirmation: str | None) -> dict:
    _require_enabled(user)
    if not seed_phrase or not seed_phrase.strip():
        raise ValueError("Seed phrase is required")
    if not mnemonic.validate(seed_phrase):
        raise ValueError("Invalid seed phrase. Please enter all 12 words.")
    _validate_new_password(password, confirmation, label="New password")

    seed_phrase = mnemonic.normalize(seed_phrase)
    salt = user["journal_encryption_salt"]
    try:
        await _check_seed_against_fragments(user["id"], journal_key_for_seed(seed_phrase, salt))
    except DecryptionError as exc:
        raise ValueError("Invalid seed phrase. Could not decrypt your journal data.") from exc

    new_password_key = journal_encryption.derive_key(password, salt)
    updated = await repositories.update_user(
        user["id"],
        {
            "journal_password_digest": _hash_password(password),
            "encrypted_seed_phrase": journal_encryption.encrypt_seed(seed_phrase, new_password_key),
        },
    )
    await repositories.delete_user_journal_sessions(user["id"])
    return updated


async def rotate_seed(user: dict, password: str | None) -> dict:
    """Replace the seed phrase and re-encrypt every fragment under the new key."""
    _require_enabled(user)
    _verify_password(user, password)

    salt = user["journal_encryption_salt"]
    old_key = journal_key_for_seed(_seed_for_password(user, password), salt)
    seed_phrase = mnemonic.generate()
    new_key = journal_key_for_seed(seed_phrase, salt)
    password_key = journal_encryption.derive_key(password, salt)
    await repositories.update_user(
        user["id"],
        {"encrypted_seed_phrase": journal_encryption.encrypt_seed(seed_phrase, password_key)},
    )
    await _enqueue_key_job(user["id"], JOB_BULK_REENCRYPT, old_key=old_key, new_key=new_key)
    await repositories.delete_user_journal_sessions(user["id"])
    return {"seed_phrase": seed_phrase}


async def update_session_timeout(user: dict, minutes) -> dict:
    try:
        minutes = int(minutes)
    except (TypeError, ValueError) as exc:
        raise ValueError("Session timeout must be a number of minutes") from exc
    if minutes < MIN_SESSION_TIMEOUT or minutes > MAX_SESSION_TIMEOUT:
        raise ValueError(
            f"Session timeout must be between {MIN_SESSION_TIMEOUT} and {MAX_SESSION_TIMEOUT} minutes"
        )
    return await repositories.update_user(user["id"], {"journal_session_timeout_minutes": minutes})


# Background handlers, dispatched by the job worker.

async def bulk_encrypt(user_id: str, encryption_key: bytes) -> int:
    count = 0
    for fragment in await repositories.list_user_fragments(user_id):
        if fragment.get("encrypted_content") or not fragment.get("content"):
            continue
        await repositories.update_journal_fragment(
            fragment["id"],
            journal_encryption.encrypt_fragment_content(fragment["content"], encryption_key),
        )
        count += 1
    logger.info("Encrypted %s journal fragments for user %s", count, user_id)
    return count


async def bulk_decrypt(user_id: str, encryption_key: bytes) -> int:
    count = 0
    for fragment in await repositories.list_user_fragments(user_id):
        if not fragment.get("encrypted_content"):
            continue
        try:
            plaintext = journal_encryption.decrypt_fragment_content(fragment, encryption_key)
        except DecryptionError:
            logger.exception("Failed to decrypt fragment %s", fragment["id"])
            continue
        await repositories.update_journal_fragment(
            fragment["id"],
            {"content": plaintext, "encrypted_content": None, "content_iv": None},
        )
        count += 1
    logger.info("Decrypted %s journal fragments for user %s", count, user_id)
    return count


async def bulk_reencrypt(user_id: str, old_key: bytes, new_key: bytes) -> int:
    count = 0
    for fragment in await repositories.list_user_fragments(user_id):
        if not fragment.get("encrypted_content"):
            continue
        try:
            plaintext = journal_encryption.decrypt_fragment_content(fragment, old_key)
        except DecryptionError:
            logger.exception("Failed to re-encrypt fragment %s", fragment["id"])
            continue
        sealed = journal_encryption.encrypt_fragment_content(plaintext, new_key)
        sealed.pop("content")
        await repositories.update_journal_fragment(fragment["id"], sealed)
        count += 1
    logger.info("Re-encrypted %s journal fragments for user %s", count, user_id)
    return count
