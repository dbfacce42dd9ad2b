from __future__ import annotations

import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
from passlib.context import CryptContext
from passlib.exc import UnknownHashError


_hasher = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
_ALGORITHM = "HS256"

# Admin-issued temporary passwords.
TEMP_PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%"
TEMP_PASSWORD_LENGTH = 12


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("password_blank")
    return _hasher.hash(password)


def verify_password(password: str, stored_hash: str) -> bool:
    if not (password and stored_hash):
        return False
    try:
        return bool(_hasher.verify(password, stored_hash))
    except (UnknownHashError, ValueError):
        return False


def generate_temp_password(length: int = TEMP_PASSWORD_LENGTH) -> str:
    return "".join(secrets.choice(TEMP_PASSWORD_ALPHABET) for _ in range(int(length)))


def generate_reset_token() -> str:
    return secrets.token_urlsafe(32)


def create_access_token(*, secret: str, user_id: str, email: str, expires_minutes: int) -> str:
    """Issue an HS256 access token.

    Claims are `sub`, `email`, `iat` and `exp`. Privileged checks read the
    role from `user_roles`, not from the token.
    """
    if not secret:
        raise ValueError("jwt_secret_blank")
    issued = datetime.now(timezone.utc)
    lifetime = timedelta(minutes=max(1, int(expires_minutes)))
    claims: Dict[str, Any] = {
        "sub": str(user_id),
        "email": email,
        "iat": int(issued.timestamp()),
        "exp": int((issued + lifetime).timestamp()),
    }
    return jwt.encode(claims, secret, algorithm=_ALGORITHM)


def decode_access_token(*, token: str, secret: str) -> Dict[str, Any]:
    """Verify signature and expiry; PyJWT errors propagate to the caller."""
    if not token:
        raise ValueError("token_blank")
    if not secret:
        raise ValueError("jwt_secret_blank")
    return jwt.decode(token, secret, algorithms=[_ALGORITHM])
