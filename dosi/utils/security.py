"""Security utilities: password hashing, session tokens."""

import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt

from dosi.config import settings

SESSION_TOKEN_TYPE = "session"


# --- Password Hashing ---

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        # malformed hash in credentials.json
        return False


def generate_password() -> str:
    return secrets.token_urlsafe(12)


# --- Session Tokens ---

def create_session_token(username: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": username,
        "iat": now,
        "exp": now + timedelta(minutes=settings.session_expire_minutes),
        "type": SESSION_TOKEN_TYPE,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    """Decode and validate a session token. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
