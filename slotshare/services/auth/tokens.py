from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from slotshare.core.config import Settings, get_settings


class TokenError(ValueError):
    """Bearer token is malformed, expired, or signed with another key."""


def issue_access_token(
    *,
    user_id: str,
    role: str,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> str:
    resolved = settings or get_settings()
    issued_at = now or datetime.now(timezone.utc)
    claims = {
        "sub": user_id,
        "role": role,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + timedelta(minutes=resolved.jwt_access_token_ttl_minutes)).timestamp()),
    }
    return jwt.encode(claims, resolved.jwt_secret, algorithm=resolved.jwt_algorithm)


def decode_access_token(token: str, *, settings: Settings | None = None) -> dict[str, Any]:
    resolved = settings or get_settings()
    try:
        claims = jwt.decode(
            token,
            resolved.jwt_secret,
            algorithms=[resolved.jwt_algorithm],
            options={"require": ["sub", "exp", "iat"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenError("Access token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenError("Invalid access token") from exc
    if not isinstance(claims.get("sub"), str) or not claims["sub"]:
        raise TokenError("Invalid access token subject")
    return claims
