"""Account passwords: argon2id hashes and the signup strength rules."""

from __future__ import annotations

from collections.abc import Callable

import argon2
from argon2.exceptions import InvalidHashError, VerificationError

from learnhub.config import get_settings

# Raising these parameters makes existing hashes report check_needs_rehash() on next login
_hasher = argon2.PasswordHasher(
    time_cost=2,
    memory_cost=64 * 1024,
    parallelism=1,
    hash_len=32,
    salt_len=16,
    type=argon2.Type.ID,
)

_REQUIRED_CHARACTERS: tuple[tuple[Callable[[str], bool], str], ...] = (
    (str.isupper, "uppercase letter"),
    (str.islower, "lowercase letter"),
    (str.isdigit, "digit"),
)


class PasswordStrengthError(ValueError):
    pass


def hash_password(password: str) -> str:
    return _hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """True when ``password`` matches. Malformed stored hashes count as a mismatch."""
    try:
        return _hasher.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def check_needs_rehash(password_hash: str) -> bool:
    return _hasher.check_needs_rehash(password_hash)


def validate_password_strength(password: str) -> None:
    """Raise PasswordStrengthError unless the password fits the configured length
    and mixes upper case, lower case and digits."""
    settings = get_settings()
    if not password or not password.strip():
        msg = "Password cannot be empty"
        raise PasswordStrengthError(msg)
    if len(password) < settings.password_min_length:
        msg = f"Password must be at least {settings.password_min_length} characters"
        raise PasswordStrengthError(msg)
    if len(password) > settings.password_max_length:
        msg = f"Password must not exceed {settings.password_max_length} characters"
        raise PasswordStrengthError(msg)
    for has_kind, kind in _REQUIRED_CHARACTERS:
        if not any(has_kind(c) for c in password):
            msg = f"Password must contain at least one {kind}"
            raise PasswordStrengthError(msg)
