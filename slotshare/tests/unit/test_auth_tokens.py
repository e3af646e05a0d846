from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from slotshare.core.config import Settings
from slotshare.services.auth.passwords import hash_password, verify_password
from slotshare.services.auth.tokens import TokenError, decode_access_token, issue_access_token


def _settings(**overrides) -> Settings:
    values = {"_env_file": None, "jwt_secret": "unit-secret", "bcrypt_rounds": 4}
    values.update(overrides)
    return Settings(**values)


def test_access_token_carries_subject_and_role() -> None:
    settings = _settings()
    token = issue_access_token(user_id="user_1", role="admin", settings=settings)
    claims = decode_access_token(token, settings=settings)
    assert claims["sub"] == "user_1"
    assert claims["role"] == "admin"
    assert claims["exp"] > claims["iat"]


def test_expired_token_is_rejected() -> None:
    settings = _settings(jwt_access_token_ttl_minutes=1)
    issued = datetime.now(timezone.utc) - timedelta(hours=1)
    token = issue_access_token(user_id="user_1", role="user", settings=settings, now=issued)
    with pytest.raises(TokenError, match="expired"):
        decode_access_token(token, settings=settings)


def test_token_signed_with_other_secret_is_rejected() -> None:
    token = issue_access_token(user_id="user_1", role="user", settings=_settings())
    with pytest.raises(TokenError):
        decode_access_token(token, settings=_settings(jwt_secret="another-secret"))


def test_password_hash_verifies_and_is_salted() -> None:
    first = hash_password("s3cret-pass", rounds=4)
    second = hash_password("s3cret-pass", rounds=4)
    assert first != second
    assert verify_password("s3cret-pass", first)
    assert not verify_password("wrong-pass", first)
    assert not verify_password("s3cret-pass", "not-a-bcrypt-hash")
