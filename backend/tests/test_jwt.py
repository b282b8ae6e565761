"""Unit tests for JWT encode/decode, invalid signature, expiration, refresh token shape."""

from datetime import datetime, timezone, timedelta

import pytest
from jose import ExpiredSignatureError, JWTError, jwt

from batchkeeper.config import Settings
from batchkeeper.core.auth import create_access_token, create_refresh_token, decode_token


@pytest.fixture
def jwt_settings() -> Settings:
    return Settings(_env_file=None, secret_key="unit-secret")


def test_create_and_decode_token_roundtrip(jwt_settings):
    token = create_access_token(jwt_settings, user_id=42, name="Asha")
    assert isinstance(token, str)
    payload = decode_token(jwt_settings, token)
    assert payload["sub"] == "42"
    assert payload["name"] == "Asha"
    assert payload["exp"] - payload["iat"] == jwt_settings.access_token_expire_seconds


def test_decode_invalid_signature_raises(jwt_settings):
    token = create_access_token(jwt_settings, user_id=1, name="a")
    bad_token = token[:-1] + ("x" if token[-1] != "x" else "y")
    with pytest.raises(JWTError):
        decode_token(jwt_settings, bad_token)


def test_decode_expired_token_raises_expired(jwt_settings):
    payload = {"sub": "1", "exp": datetime.now(timezone.utc) - timedelta(minutes=1)}
    token = jwt.encode(payload, jwt_settings.secret_key, algorithm=jwt_settings.jwt_algorithm)
    with pytest.raises(ExpiredSignatureError):
        decode_token(jwt_settings, token)


def test_decode_expired_token_without_exp_check(jwt_settings):
    """Expired but correctly signed tokens still yield their subject for renewal."""
    token = create_access_token(jwt_settings, user_id=7, name="b", expires_in=-60)
    assert decode_token(jwt_settings, token, verify_exp=False)["sub"] == "7"


def test_decode_wrong_key_raises(jwt_settings):
    token = create_access_token(jwt_settings, user_id=1, name="a")
    other = jwt_settings.model_copy(update={"secret_key": "other-secret"})
    with pytest.raises(JWTError):
        decode_token(other, token)


def test_refresh_token_is_64_hex_chars():
    token = create_refresh_token()
    assert len(token) == 64
    int(token, 16)
    assert create_refresh_token() != token
