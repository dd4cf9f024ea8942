"""Hashing for optional signing-link passwords."""

from __future__ import annotations

from typing import cast

from passlib.context import CryptContext

MIN_PASSWORD_LENGTH = 4

PASSWORD_CONTEXT = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return cast(str, PASSWORD_CONTEXT.hash(password))


def verify_password(password: str | None, password_hash: str | None) -> bool:
    if not password or not password_hash:
        return False
    try:
        return cast(bool, PASSWORD_CONTEXT.verify(password, password_hash))
    except ValueError:
        # Unrecognised hash format
        return False
