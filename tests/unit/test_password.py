"""Password hashing and strength rules."""

from __future__ import annotations

import pytest

from learnhub.auth.password import (
    PasswordStrengthError,
    check_needs_rehash,
    hash_password,
    validate_password_strength,
    verify_password,
)


class TestHashing:
    def test_hash_is_argon2id(self):
        hashed = hash_password("SecurePass1")
        assert hashed.startswith("$argon2id$")
        assert not check_needs_rehash(hashed)

    def test_verify_roundtrip(self):
        hashed = hash_password("SecurePass1")
        assert verify_password("SecurePass1", hashed)
        assert not verify_password("securepass1", hashed)

    def test_verify_garbage_hash_returns_false(self):
        assert not verify_password("SecurePass1", "not-a-hash")


class TestStrength:
    def test_accepts_strong_password(self):
        validate_password_strength("SecurePass1")

    @pytest.mark.parametrize(
        ("password", "fragment"),
        [
            ("", "empty"),
            ("Ab1", "at least"),
            ("securepass1", "uppercase"),
            ("SECUREPASS1", "lowercase"),
            ("SecurePassword", "digit"),
        ],
    )
    def test_rejects_weak_passwords(self, password: str, fragment: str):
        with pytest.raises(PasswordStrengthError, match=fragment):
            validate_password_strength(password)

    def test_rejects_overlong_password(self):
        with pytest.raises(PasswordStrengthError, match="exceed"):
            validate_password_strength("Aa1" + "x" * 200)
