"""bcrypt hashing for attachment passwords.

The stored hash decides whether an unlock attempt counts as a failure; the
sealed archive is opened only after it matches.
"""

from __future__ import annotations

import bcrypt

from vault_backend.config import settings

# bcrypt silently ignores input past this length.
MAX_PASSWORD_BYTES = 72


def password_fits(password: str) -> bool:
    return 0 < len(password.encode("utf-8")) <= MAX_PASSWORD_BYTES


def hash_attachment_password(password: str) -> str:
    if not password_fits(password):
        raise ValueError(f"attachment password must be 1..{MAX_PASSWORD_BYTES} UTF-8 bytes")
    salt = bcrypt.gensalt(rounds=settings.attachments_bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("ascii")


def check_attachment_password(password: str, password_hash: str) -> bool:
    if not password_fits(password):
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("ascii"))
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False
