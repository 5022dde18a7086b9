"""
Unit tests for bearer token validation.
"""
import datetime

import pytest
from jose import JWTError, jwt

from farm_assistant.auth import AuthError, decode_user_token


def make_token(claims, secret="test_secret"):
    return jwt.encode(claims, secret, algorithm="HS256")


def test_valid_token_returns_subject():
    assert decode_user_token(make_token({"sub": "farmer-42"})) == "farmer-42"


def test_wrong_secret_is_rejected():
    with pytest.raises(JWTError):
        decode_user_token(make_token({"sub": "farmer-42"}, secret="other"))


def test_expired_token_is_rejected():
    expired = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(minutes=5)

    with pytest.raises(JWTError):
        decode_user_token(make_token({"sub": "farmer-42", "exp": expired}))


def test_missing_subject():
    with pytest.raises(AuthError, match="sub"):
        decode_user_token(make_token({"name": "nobody"}))


def test_secret_not_configured(monkeypatch):
    monkeypatch.delenv("JWT_SECRET")

    with pytest.raises(AuthError, match="not configured"):
        decode_user_token("anything")
