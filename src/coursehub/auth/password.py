"""Password hashing (argon2id) and strength rules for email registration."""

from __future__ import annotations

import argon2

from coursehub.config import get_settings

_hasher = argon2.PasswordHasher(
    time_cost=2,
    memory_cost=65536,  # 64 MB
    parallelism=1,
    hash_len=32,
    salt_len=16,
    type=argon2.Type.ID,
)

# Verified against when the email is unknown so both paths cost one argon2 verify
_DUMMY_HASH = _hasher.hash("coursehub-no-such-account")


class PasswordStrengthError(ValueError):
    """The password does not meet the registration rules."""


def hash_password(password: str) -> str:
    return _hasher.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    """True if the password matches. Never raises; a missing hash still costs a verify."""
    try:
        return _hasher.verify(password_hash or _DUMMY_HASH, password) and password_hash is not None
    except (argon2.exceptions.VerifyMismatchError, argon2.exceptions.InvalidHashError):
        return False


def verify_and_upgrade(password: str, password_hash: str | None) -> tuple[bool, str | None]:
    """Verify, and return a fresh hash when the stored one uses outdated parameters."""
    if not verify_password(password, password_hash):
        return False, None
    if password_hash is not None and _hasher.check_needs_rehash(password_hash):
        return True, hash_password(password)
    return True, None


def validate_password_strength(password: str) -> None:
    """
    Enforce the configured length bounds plus at least one letter and one digit.

    Raises:
        PasswordStrengthError: With a message suitable for the API response.
    """
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
    if not any(c.isalpha() for c in password):
        msg = "Password must contain at least one letter"
        raise PasswordStrengthError(msg)
    if not any(c.isdigit() for c in password):
        msg = "Password must contain at least one digit"
        raise PasswordStrengthError(msg)
