"""
Access tokens. Identity is issued upstream; this service only signs and verifies.

Claims: sub (user id), email, optional org_id (default organization),
iat, exp, type="access". RS256 reads PEM files; HS* algorithms use
JWT_SECRET_KEY.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError

from reqflow.config import settings

_key_cache: dict[str, str] = {}


def _read_key(path: Optional[str]) -> str:
    if not path:
        raise JWTError("JWT key path is not configured")
    if path not in _key_cache:
        with open(path, "r") as f:
            _key_cache[path] = f.read()
    return _key_cache[path]


def _uses_shared_secret() -> bool:
    return settings.JWT_ALGORITHM.upper().startswith("HS")


def _signing_key() -> str:
    if _uses_shared_secret():
        if not settings.JWT_SECRET_KEY:
            raise JWTError("JWT_SECRET_KEY is not configured")
        return settings.JWT_SECRET_KEY
    return _read_key(settings.JWT_PRIVATE_KEY_PATH)


def _verification_key() -> str:
    if _uses_shared_secret():
        if not settings.JWT_SECRET_KEY:
            raise JWTError("JWT_SECRET_KEY is not configured")
        return settings.JWT_SECRET_KEY
    return _read_key(settings.JWT_PUBLIC_KEY_PATH)


def create_access_token(
    user_id: str, email: str, org_id: Optional[str] = None
) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "email": email,
        "iat": now,
        "exp": now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        "type": "access",
    }
    if org_id:
        claims["org_id"] = str(org_id)
    return jwt.encode(claims, _signing_key(), algorithm=settings.JWT_ALGORITHM)


def verify_access_token(token: str) -> dict:
    """Raises JWTError when the token is invalid, expired or not an access token."""
    payload = jwt.decode(
        token, _verification_key(), algorithms=[settings.JWT_ALGORITHM]
    )
    if payload.get("type") != "access":
        raise JWTError("Not an access token")
    if not payload.get("sub"):
        raise JWTError("Token has no subject")
    return payload
