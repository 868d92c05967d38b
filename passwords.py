from __future__ import annotations

import re

from werkzeug.security import check_password_hash, generate_password_hash

from utils import ApiError


MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128

_CLASSES = (re.compile(r"[a-z]"), re.compile(r"[A-Z]"), re.compile(r"\d"), re.compile(r"[^A-Za-z0-9]"))


def validate_password_policy(password: str) -> str:
    pwd = str(password or "")
    if not pwd:
        raise ApiError("BAD_REQUEST", "Password is required")
    if len(pwd) < MIN_PASSWORD_LENGTH:
        raise ApiError("BAD_REQUEST", f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(pwd) > MAX_PASSWORD_LENGTH:
        raise ApiError("BAD_REQUEST", "Password is too long")
    if not all(rx.search(pwd) for rx in _CLASSES):
        raise ApiError(
            "BAD_REQUEST",
            "Password must include an uppercase letter, a lowercase letter, a digit and a symbol",
        )
    return pwd


def hash_password(password: str) -> str:
    return generate_password_hash(validate_password_policy(password), method="scrypt", salt_length=16)


def verify_password(password: str, password_hash: str) -> bool:
    stored = str(password_hash or "")
    if not stored or not password:
        return False
    try:
        return check_password_hash(stored, str(password))
    except ValueError:
        # Unknown or malformed hash format.
        return False
