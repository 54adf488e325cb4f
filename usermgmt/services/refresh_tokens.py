"""
Refresh-token lifecycle: issue, validate, rotate and revoke.

A user has at most one live chain: issue() revokes everything outstanding
before minting, rotate() revokes exactly the consumed token and mints its
successor. Functions flush but never commit; the caller's unit of work
commits once so each operation is applied atomically.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.orm import Session

from usermgmt.core.security import generate_refresh_token, hash_refresh_token
from usermgmt.models import RefreshToken, User
from usermgmt.repositories import refresh_tokens as token_repo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RotatedToken:
    """Result of a successful rotation."""

    user: User
    plain_token: str


def _mint(db: Session, user: User, ttl_seconds: int) -> str:
    plain_token = generate_refresh_token()
    now = datetime.now(UTC)
    token_repo.add_token(
        db,
        RefreshToken(
            user_id=user.id,
            token_hash=hash_refresh_token(plain_token),
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        ),
    )
    return plain_token


def validate(db: Session, plain_token: str | None) -> RefreshToken | None:
    """Return the usable record for plain_token, or None. Never mutates."""
    if not plain_token or not plain_token.strip():
        return None
    record = token_repo.find_by_token_hash(db, hash_refresh_token(plain_token))
    if record is None or not record.is_usable():
        return None
    return record


def revoke_all_for_user(db: Session, user: User) -> int:
    """Revoke every outstanding token of user (login purge, logout, force-logout, delete)."""
    revoked = token_repo.revoke_all_for_user(db, user.id, datetime.now(UTC))
    if revoked:
        logger.info(
            "Refresh tokens revoked",
            extra={"user_id": user.id, "revoked_count": revoked},
        )
    return revoked


def issue(db: Session, user: User, ttl_seconds: int) -> str:
    """Start a new chain for user: revoke all prior tokens, then mint one. Returns the plaintext."""
    revoke_all_for_user(db, user)
    return _mint(db, user, ttl_seconds)


def rotate(db: Session, plain_token: str | None, ttl_seconds: int) -> RotatedToken | None:
    """
    Consume plain_token and mint its successor for the same user.

    Returns None when the token is unknown, revoked (including already
    rotated), expired, or its owner is inactive.
    """
    existing = validate(db, plain_token)
    if existing is None:
        return None
    user = existing.user
    # Conditional revoke: of two concurrent rotations only one mints a successor.
    if not token_repo.revoke_token(db, existing.id, datetime.now(UTC)):
        logger.warning("Refresh token already consumed", extra={"user_id": user.id})
        return None
    new_plain = _mint(db, user, ttl_seconds)
    return RotatedToken(user=user, plain_token=new_plain)


def revoke_by_plain_token(db: Session, plain_token: str | None) -> User | None:
    """Revoke the single matching usable token; return its owner, or None."""
    existing = validate(db, plain_token)
    if existing is None:
        return None
    user = existing.user
    if not token_repo.revoke_token(db, existing.id, datetime.now(UTC)):
        return None
    return user
