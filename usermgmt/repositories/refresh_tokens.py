"""Query shapes for the refresh_tokens table."""

from datetime import datetime

from sqlalchemy.orm import Session

from usermgmt.models import RefreshToken


def add_token(db: Session, token: RefreshToken) -> RefreshToken:
    """Insert a token record. A token_hash collision raises IntegrityError at flush."""
    db.add(token)
    db.flush()
    return token


def find_by_token_hash(db: Session, token_hash: str) -> RefreshToken | None:
    return db.query(RefreshToken).filter(RefreshToken.token_hash == token_hash).first()


def revoke_token(db: Session, token_id: int, now: datetime) -> bool:
    """
    Revoke one token only if it is still outstanding. False means another
    transaction revoked it first (e.g. a concurrent rotation of the same token).
    """
    changed = (
        db.query(RefreshToken)
        .filter(RefreshToken.id == token_id, RefreshToken.revoked_at.is_(None))
        .update({RefreshToken.revoked_at: now}, synchronize_session="evaluate")
    )
    return changed == 1


def revoke_all_for_user(db: Session, user_id: int, now: datetime) -> int:
    """Set revoked_at on every non-revoked token of the user; return how many changed."""
    return (
        db.query(RefreshToken)
        .filter(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
        .update({RefreshToken.revoked_at: now}, synchronize_session="evaluate")
    )
