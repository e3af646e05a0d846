from __future__ import annotations

import bcrypt

from slotshare.core.config import get_settings


def hash_password(raw_password: str, *, rounds: int | None = None) -> str:
    # bcrypt salts per call, so equal passwords never share a stored hash.
    cost = rounds or get_settings().bcrypt_rounds
    return bcrypt.hashpw(raw_password.encode("utf-8"), bcrypt.gensalt(rounds=cost)).decode("utf-8")


def verify_password(raw_password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(raw_password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash; treat as a failed match rather than a server error.
        return False
