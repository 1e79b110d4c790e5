from __future__ import annotations

import base64
import binascii
import hashlib
import os
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from doosr.settings import get_settings

PBKDF2_ITERATIONS = 100_000
KEY_LENGTH = 32
SALT_LENGTH = 32
IV_LENGTH = 12
TAG_LENGTH = 16


class DecryptionError(Exception):
    pass


def _b64encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _b64decode(value: str) -> bytes:
    return base64.b64decode(value.encode("ascii"), validate=True)


def _as_bytes(value) -> bytes:
    return value if isinstance(value, bytes) else str(value).encode("utf-8")


def encrypt(plaintext: str, key: bytes) -> dict:
    """AES-256-GCM encrypt ``plaintext``; all returned parts are base64 text."""
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, auth_tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return {
        "ciphertext": _b64encode(ciphertext),
        "iv": _b64encode(iv),
        "auth_tag": _b64encode(auth_tag),
    }


def decrypt(ciphertext: str, iv: str, key: bytes, auth_tag: str | None = None) -> str:
    """Reverse of ``encrypt``. Without ``auth_tag`` the tag must trail the ciphertext."""
    try:
        sealed = _b64decode(ciphertext)
        if auth_tag:
            sealed += _b64decode(auth_tag)
        plaintext = AESGCM(key).decrypt(_b64decode(iv), sealed, None)
        return plaintext.decode("utf-8")
    except (InvalidTag, ValueError, TypeError, binascii.Error, UnicodeDecodeError) as exc:
        raise DecryptionError(f"Failed to decrypt: {exc.__class__.__name__}") from exc


def derive_key(password: str, salt) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=_as_bytes(salt),
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))


def generate_salt() -> str:
    return secrets.token_hex(SALT_LENGTH)


def pack_seed(encrypted: dict) -> str:
    return f"{encrypted['ciphertext']}:{encrypted['iv']}:{encrypted['auth_tag']}"


def unpack_seed(packed: str) -> dict:
    parts = (packed or "").split(":")
    if len(parts) != 3:
        raise DecryptionError("Malformed encrypted seed phrase")
    ciphertext, iv, auth_tag = parts
    return {"ciphertext": ciphertext, "iv": iv, "auth_tag": auth_tag}


def encrypt_seed(seed_phrase: str, password_key: bytes) -> str:
    return pack_seed(encrypt(seed_phrase, password_key))


def decrypt_seed(packed: str, password_key: bytes) -> str:
    parts = unpack_seed(packed)
    return decrypt(parts["ciphertext"], parts["iv"], password_key, auth_tag=parts["auth_tag"])


def encrypt_fragment_content(content: str, key: bytes) -> dict:
    encrypted = encrypt(content, key)
    return {
        "encrypted_content": encrypted["ciphertext"],
        "content_iv": f"{encrypted['iv']}:{encrypted['auth_tag']}",
        "content": None,
    }


def decrypt_fragment_content(fragment: dict, key: bytes) -> str:
    iv, _, auth_tag = (fragment.get("content_iv") or "").partition(":")
    if not fragment.get("encrypted_content") or not iv:
        raise DecryptionError("Fragment is not encrypted")
    return decrypt(fragment["encrypted_content"], iv, key, auth_tag=auth_tag or None)


def _fernet() -> Fernet:
    settings = get_settings()
    digest = hashlib.sha256(settings.journal_session_encryption_key.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def seal(value: str) -> str:
    """Encrypt a server-held secret (session keys, job payloads) at rest."""
    return _fernet().encrypt(value.encode("utf-8")).decode("utf-8")


def unseal(value: str) -> str:
    try:
        return _fernet().decrypt(value.encode("utf-8")).decode("utf-8")
    except InvalidToken as exc:
        raise DecryptionError("Sealed value could not be read") from exc


def key_to_text(key: bytes) -> str:
    return _b64encode(key)


def key_from_text(value: str) -> bytes:
    return _b64decode(value)
