"""Security and authentication helpers for JWT bearer auth."""
from __future__ import annotations

import binascii
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.config import settings
from app.core.exceptions import AuthenticationError
from app.database import get_db
from app.models import User

ALGORITHM = "HS256"
PBKDF2_ITERATIONS = 210000
AUTH_SCHEME = HTTPBearer(auto_error=False)

ACCESS = "access"
REFRESH = "refresh"
PASSWORD_RESET = "password_reset"


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _secret_key() -> str:
    return settings.secret_key.get_secret_value()


def hash_password(password: str, salt_hex: str | None = None, iterations: int = PBKDF2_ITERATIONS) -> str:
    """Create pbkdf2_sha256 hash string."""
    salt_hex = salt_hex or secrets.token_hex(16)
    dk = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), bytes.fromhex(salt_hex), iterations
    )
    digest_hex = binascii.hexlify(dk).decode("ascii")
    return f"pbkdf2_sha256${iterations}${salt_hex}${digest_hex}"


def verify_password(password: str, encoded_hash: str) -> bool:
    """Verify pbkdf2_sha256 hash format: pbkdf2_sha256$iters$salt_hex$digest_hex."""
    try:
        algorithm, iter_str, salt_hex, _digest_hex = encoded_hash.split("$", 3)
        if algorithm != "pbkdf2_sha256":
            return False
        expected = hash_password(password, salt_hex=salt_hex, iterations=int(iter_str))
        return hmac.compare_digest(expected, encoded_hash)
    except (ValueError, TypeError):
        return False


def _encode(subject: str, token_type: str, ttl: timedelta, extra: Dict[str, Any] | None = None) -> str:
    issued = now_utc()
    payload: Dict[str, Any] = {
        "sub": subject,
        "type": token_type,
        "iat": int(issued.timestamp()),
        "exp": int((issued + ttl).timestamp()),
        "jti": secrets.token_hex(8),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, _secret_key(), algorithm=ALGORITHM)


def create_access_token(subject: str, extra: Dict[str, Any] | None = None) -> str:
    return _encode(subject, ACCESS, timedelta(minutes=settings.access_token_ttl_minutes), extra)


def create_refresh_token(subject: str) -> str:
    return _encode(subject, REFRESH, refresh_token_ttl())


def create_password_reset_token(subject: str) -> str:
    return _encode(subject, PASSWORD_RESET, timedelta(minutes=settings.password_reset_ttl_minutes))


def refresh_token_ttl() -> timedelta:
    return timedelta(days=settings.refresh_token_ttl_days)


def decode_token(token: str, expected_type: str = ACCESS) -> Dict[str, Any]:
    """Decode and validate a token; raises AuthenticationError on any failure."""
    try:
        payload = jwt.decode(token, _secret_key(), algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired, please login again")
    except jwt.PyJWTError:
        raise AuthenticationError("Invalid token, authorization denied")
    if payload.get("type") != expected_type or not payload.get("sub"):
        raise AuthenticationError("Invalid token, authorization denied")
    return payload


def _user_from_credentials(creds: HTTPAuthorizationCredentials | None, db: Session) -> User:
    if creds is None or not creds.credentials:
        raise AuthenticationError("No token provided, authorization denied")
    payload = decode_token(creds.credentials)
    user = db.get(User, str(payload["sub"]))
    if user is None:
        raise AuthenticationError("User not found, authorization denied")
    if not user.is_active:
        raise AuthenticationError("User account is not active, authorization denied")
    return user


def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(AUTH_SCHEME),
    db: Session = Depends(get_db),
) -> User:
    return _user_from_credentials(creds, db)


def get_optional_user(
    creds: HTTPAuthorizationCredentials | None = Depends(AUTH_SCHEME),
    db: Session = Depends(get_db),
) -> User | None:
    if creds is None:
        return None
    try:
        return _user_from_credentials(creds, db)
    except AuthenticationError:
        return None
