from __future__ import annotations

import secrets
from functools import lru_cache

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from mnemonic import Mnemonic

WORD_COUNT = 12
PBKDF2_ITERATIONS = 2048
KEY_LENGTH = 32


class InvalidMnemonicError(Exception):
    pass


@lru_cache(maxsize=1)
def wordlist() -> tuple[str, ...]:
    return tuple(Mnemonic("english").wordlist)


@lru_cache(maxsize=1)
def _wordset() -> frozenset[str]:
    return frozenset(wordlist())


def generate() -> str:
    words = wordlist()
    return " ".join(secrets.choice(words) for _ in range(WORD_COUNT))


def normalize(phrase: str) -> str:
    return " ".join((phrase or "").strip().lower().split())


def validate(phrase: str | None) -> bool:
    if not phrase or not phrase.strip():
        return False
    words = normalize(phrase).split(" ")
    if len(words) != WORD_COUNT:
        return False
    return all(word in _wordset() for word in words)


def derive_key(phrase: str, salt) -> bytes:
    if not validate(phrase):
        raise InvalidMnemonicError("Invalid mnemonic phrase")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt if isinstance(salt, bytes) else str(salt).encode("utf-8"),
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(normalize(phrase).encode("utf-8"))
