"""Password hashing, access-token signing and refresh-token value helpers."""

import base64
import hashlib
import secrets
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import TYPE_CHECKING, Any

import bcrypt
import jwt

if TYPE_CHECKING:
    from usermgmt.core.config import Settings

# Bcrypt cost (rounds); 12 is a good default for security vs speed.
BCRYPT_ROUNDS = 12

# Refresh-token entropy in bytes (512 bits before base64url encoding).
REFRESH_TOKEN_BYTES = 64

USERNAME_MAX_LEN = 255
PASSWORD_MAX_LEN = 128


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password for storage. Do not store plain passwords."""
    # bcrypt has a 72-byte limit; truncate to avoid errors (validation already limits length).
    pw_bytes = plain_password.encode("utf-8")[:72]
    return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


@lru_cache(maxsize=1)
def dummy_password_hash() -> str:
    """Hash of a random secret, checked when no stored hash exists so every login pays bcrypt."""
    return hash_password(secrets.token_urlsafe(16))


def verify_password(plain_password: str, hashed: str | None) -> bool:
    """Verify a plain password against a stored hash. Malformed or missing hashes never match."""
    if not hashed:
        return False
    pw_bytes = plain_password.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(pw_bytes, hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def create_access_token(
    subject: str,
    role: str,
    settings: "Settings",
    ttl_seconds: int | None = None,
) -> str:
    """Create a signed access token for ``subject`` (username) carrying its role."""
    now = datetime.now(UTC)
    ttl = ttl_seconds if ttl_seconds is not None else settings.ACCESS_TOKEN_TTL_SECONDS
    payload: dict[str, Any] = {
        "iss": settings.JWT_ISSUER,
        "sub": subject,
        "preferred_username": subject,
        "role": role,
        "groups": [role],
        "iat": now,
        "exp": now + timedelta(seconds=ttl),
    }
    return jwt.encode(
        payload,
        settings.JWT_SECRET.get_secret_value(),
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_access_token(token: str, settings: "Settings") -> dict[str, Any]:
    """
    Decode and validate an access token; return its claims.
    Raises jwt.PyJWTError on a bad signature, wrong issuer or expired token.
    """
    return jwt.decode(
        token,
        settings.JWT_SECRET.get_secret_value(),
        algorithms=[settings.JWT_ALGORITHM],
        issuer=settings.JWT_ISSUER,
        options={"require": ["exp", "sub"]},
    )


def generate_refresh_token() -> str:
    """Return a fresh opaque refresh token (base64url, no padding)."""
    return secrets.token_urlsafe(REFRESH_TOKEN_BYTES)


def hash_refresh_token(token: str) -> str:
    """Deterministic SHA-256 digest of a refresh token, base64url-encoded without padding."""
    digest = hashlib.sha256(token.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
