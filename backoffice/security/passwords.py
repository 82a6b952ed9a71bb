from __future__ import annotations

from pwdlib import PasswordHash

MIN_PASSWORD_LENGTH = 8

password_hash = PasswordHash.recommended()


def validate_password_strength(raw_password: str) -> None:
    if len(raw_password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters')


def hash_password(raw_password: str) -> str:
    validate_password_strength(raw_password)
    return password_hash.hash(raw_password)


def verify_and_upgrade(raw_password: str, hashed_password: str) -> tuple[bool, str | None]:
    """Check a password; the second value is a fresh hash when the stored one is outdated."""
    return password_hash.verify_and_update(raw_password, hashed_password)
