"""
auth/passwords.py -- Password hashing and system-generated credentials.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper) with an explicit cost
       factor of 12. The _DUMMY_HASH constant enables timing equalization in
       AuthService.authenticate() so response time does not reveal whether an
       email is registered.

  Temporary passwords: drawn from secrets.choice() over an alphabet without
       visually ambiguous characters (no 0/O, 1/l/I), because admins and users
       may have to read them off an email. secrets.choice is uniform; the
       random module is never used for credentials.

  Reset tokens: secrets.token_hex(32), 256 bits of entropy, used as the sole
       lookup key for a reset.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import secrets

import bcrypt

from auth.errors import PasswordTooLong

BCRYPT_ROUNDS = 12
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_BYTES = 72
TEMPORARY_PASSWORD_LENGTH = 16

# Excludes 0, O, 1, l and I.
TEMPORARY_PASSWORD_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz23456789!@#$%^&*"


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def password_too_long(plain: str) -> bool:
    """True when plain encodes to more than bcrypt's MAX_PASSWORD_BYTES."""
    return len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt refuses input longer than 72 bytes, and a multi-byte UTF-8
    password reaches that limit well before 72 characters. Raises
    PasswordTooLong instead of truncating.
    """
    if password_too_long(plain):
        raise PasswordTooLong(MAX_PASSWORD_BYTES)
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A password too long to have been hashed can never match.
    """
    if password_too_long(plain):
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash. Treat as a mismatch, never as a match.
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than later ones.
DUMMY_HASH: str = hash_password("appgate_timing_dummy")


# ---------------------------------------------------------------------------
# Generated credentials
# ---------------------------------------------------------------------------


def generate_temporary_password(length: int = TEMPORARY_PASSWORD_LENGTH) -> str:
    """Return a random password of the given length from TEMPORARY_PASSWORD_ALPHABET.

    Raises ValueError for a non-positive length.
    """
    if length <= 0:
        raise ValueError("Password length must be positive")
    return "".join(secrets.choice(TEMPORARY_PASSWORD_ALPHABET) for _ in range(length))


def generate_reset_token() -> str:
    """Return a 64-character hex token (32 random bytes)."""
    return secrets.token_hex(32)


def check_password_strength(password: str | None) -> bool:
    return bool(password) and len(password) >= MIN_PASSWORD_LENGTH
