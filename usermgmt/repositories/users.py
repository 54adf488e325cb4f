"""Query shapes for the users table."""

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from usermgmt.models import User

LIKE_ESCAPE = "\\"


def _escape_like(term: str) -> str:
    return (
        term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def get_user(db: Session, user_id: int) -> User | None:
    return db.get(User, user_id)


def find_by_username(db: Session, username: str) -> User | None:
    return db.query(User).filter(User.username == username).first()


def find_by_external_id(db: Session, external_id: str) -> User | None:
    return db.query(User).filter(User.external_id == external_id).first()


def username_taken(db: Session, username: str, exclude_id: int | None = None) -> bool:
    """True if another row (not exclude_id) already uses this username."""
    query = db.query(User.id).filter(User.username == username)
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    return query.first() is not None


def email_taken(db: Session, email: str, exclude_id: int | None = None) -> bool:
    query = db.query(User.id).filter(func.lower(User.email) == email.lower())
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    return query.first() is not None


def list_users(db: Session) -> list[User]:
    return db.query(User).order_by(User.id).all()


def search_users(db: Session, term: str) -> list[User]:
    """Case-insensitive substring match on name or email; the term is matched literally."""
    pattern = f"%{_escape_like(term.lower())}%"
    return (
        db.query(User)
        .filter(
            or_(
                func.lower(User.name).like(pattern, escape=LIKE_ESCAPE),
                func.lower(User.email).like(pattern, escape=LIKE_ESCAPE),
            )
        )
        .order_by(User.id)
        .all()
    )
