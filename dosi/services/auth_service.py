"""Operator authentication.

Credentials live in ``credentials.json`` in the data directory, with the
password stored as a bcrypt hash. A successful login yields a signed session
token; the registry only ever sees the RequestContext built from it.
"""

import hmac
import json
import logging
from pathlib import Path
from typing import Optional

import jwt

from dosi.config import settings
from dosi.services.context import RequestContext
from dosi.utils.activity_log import log_activity
from dosi.utils.security import (
    SESSION_TOKEN_TYPE,
    create_session_token,
    decode_token,
    generate_password,
    hash_password,
    verify_password,
)

logger = logging.getLogger(__name__)


def write_credentials(username: str, password: str, path: Optional[Path] = None) -> Path:
    path = path or settings.credentials_file
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({
        "username": username,
        "password_hash": hash_password(password),
    }, indent=2) + "\n")
    return path


def ensure_credentials(path: Optional[Path] = None) -> None:
    """Create credentials.json on first start.

    Uses DOSI_ADMIN_USERNAME / DOSI_ADMIN_PASSWORD when set, otherwise a
    generated password that is logged once.
    """
    path = path or settings.credentials_file
    if path.exists():
        return

    password = settings.admin_password
    if not password:
        password = generate_password()
        logger.warning(
            "No operator credentials found; created user %r with password %s (change it with dosi-reset-password)",
            settings.admin_username, password,
        )
    write_credentials(settings.admin_username, password, path)


def load_credentials(path: Optional[Path] = None) -> dict:
    path = path or settings.credentials_file
    ensure_credentials(path)
    return json.loads(path.read_text())


def authenticate(username: Optional[str], password: Optional[str]) -> bool:
    if not username or not password:
        return False
    creds = load_credentials()
    if not hmac.compare_digest(username.encode(), creds.get("username", "").encode()):
        return False
    return verify_password(password, creds.get("password_hash", ""))


def login(username: Optional[str], password: Optional[str], client_ip: str) -> Optional[str]:
    """Verify credentials and return a session token, or None."""
    if authenticate(username, password):
        log_activity(client_ip, f"Successful login by user: {username}")
        return create_session_token(username)
    log_activity(client_ip, f"Failed login attempt with username: {username}")
    return None


def resolve_context(token: Optional[str], client_ip: str) -> RequestContext:
    """Build the caller context from a session token (if any)."""
    if token:
        try:
            payload = decode_token(token)
        except jwt.PyJWTError:
            payload = {}
        if payload.get("type") == SESSION_TOKEN_TYPE and payload.get("sub"):
            return RequestContext(client_ip=client_ip, username=payload["sub"], authenticated=True)
    return RequestContext(client_ip=client_ip)


def is_authenticated(context: RequestContext) -> bool:
    return context.authenticated
