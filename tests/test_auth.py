"""Operator credentials and session tokens."""

import json

import jwt

from dosi.config import settings
from dosi.services.auth_service import (
    authenticate,
    is_authenticated,
    load_credentials,
    login,
    resolve_context,
    write_credentials,
)
from dosi.utils.security import create_session_token, verify_password


def test_credentials_seeded_from_environment():
    creds = load_credentials()
    assert creds["username"] == "operator"
    assert creds["password_hash"] != "test-password"
    assert verify_password("test-password", creds["password_hash"])


def test_authenticate():
    assert authenticate("operator", "test-password")
    assert not authenticate("operator", "wrong")
    assert not authenticate("admin", "test-password")
    assert not authenticate(None, None)


def test_authenticate_non_ascii_username():
    assert authenticate("opérateur", "test-password") is False
    assert login("opérateur", "x", "127.0.0.1") is None


def test_login_returns_session_token():
    token = login("operator", "test-password", "127.0.0.1")
    context = resolve_context(token, "127.0.0.1")

    assert is_authenticated(context)
    assert context.username == "operator"
    assert login("operator", "nope", "127.0.0.1") is None


def test_bad_tokens_give_anonymous_context():
    assert not resolve_context(None, "10.0.0.1").authenticated
    assert not resolve_context("garbage", "10.0.0.1").authenticated

    forged = jwt.encode({"sub": "operator", "type": "session"}, "other-secret", algorithm="HS256")
    assert not resolve_context(forged, "10.0.0.1").authenticated

    wrong_type = jwt.encode({"sub": "operator", "type": "refresh"}, settings.jwt_secret, algorithm="HS256")
    assert not resolve_context(wrong_type, "10.0.0.1").authenticated


def test_session_token_carries_username():
    payload = jwt.decode(create_session_token("operator"), settings.jwt_secret, algorithms=["HS256"])
    assert payload["sub"] == "operator"
    assert payload["type"] == "session"


def test_write_credentials_hashes_password(tmp_path):
    path = write_credentials("ops", "s3cret-pass", tmp_path / "credentials.json")
    data = json.loads(path.read_text())
    assert data["username"] == "ops"
    assert verify_password("s3cret-pass", data["password_hash"])
