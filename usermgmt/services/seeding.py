"""
Startup seeding: make sure the default administrator exists and backfill
legacy rows that predate required fields.

Username backfill checks uniqueness with plain queries, so it must run from a
single process (app startup of a single instance, or `python -m usermgmt.seed`).
"""

import logging
import re
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from usermgmt.core.security import hash_password
from usermgmt.models import Role, User
from usermgmt.repositories import users as user_repo

if TYPE_CHECKING:
    from usermgmt.core.config import Settings

logger = logging.getLogger(__name__)

_USERNAME_DISALLOWED = re.compile(r"[^a-z0-9._-]")
_WHITESPACE = re.compile(r"\s+")


def sanitize_username(raw: str) -> str:
    return _USERNAME_DISALLOWED.sub("", raw.strip().lower())


def derive_username(user: User) -> str:
    """Email local part, else the dotted name plus id, else user<id>."""
    if user.email and "@" in user.email:
        return user.email.split("@", 1)[0]
    if user.name and user.name.strip():
        return _WHITESPACE.sub(".", user.name.strip().lower()) + str(user.id)
    return f"user{user.id}"


def make_username_unique(db: Session, base: str, user_id: int | None) -> str:
    """Return base if free, else base2, base3, ..."""
    cleaned = sanitize_username(base) or "user"
    if not user_repo.username_taken(db, cleaned, exclude_id=user_id):
        return cleaned
    suffix = 2
    while user_repo.username_taken(db, f"{cleaned}{suffix}", exclude_id=user_id):
        suffix += 1
    return f"{cleaned}{suffix}"


def ensure_admin(db: Session, settings: "Settings") -> User:
    """Create the default administrator, or restore its role/active flag and blank fields."""
    admin = user_repo.find_by_username(db, settings.SEED_ADMIN_USERNAME)
    if admin is None:
        admin = User(
            name=settings.SEED_ADMIN_NAME,
            email=settings.SEED_ADMIN_EMAIL,
            username=settings.SEED_ADMIN_USERNAME,
            role=Role.ADMIN.value,
            active=True,
        )
        if settings.AUTH_MODE == "local":
            admin.password_hash = hash_password(settings.SEED_ADMIN_PASSWORD.get_secret_value())
        db.add(admin)
        db.flush()
        logger.info("Seeded default administrator", extra={"username": admin.username})
        return admin

    if not (admin.name or "").strip():
        admin.name = settings.SEED_ADMIN_NAME
    if not (admin.email or "").strip():
        admin.email = settings.SEED_ADMIN_EMAIL
    admin.role = Role.ADMIN.value
    admin.active = True
    if settings.AUTH_MODE == "local" and not admin.password_hash:
        admin.password_hash = hash_password(settings.SEED_ADMIN_PASSWORD.get_secret_value())
    db.flush()
    return admin


def backfill_user(db: Session, user: User, settings: "Settings") -> bool:
    """Fill defaults into a legacy row. Returns True when anything changed."""
    updated = False
    if not (user.username or "").strip():
        user.username = make_username_unique(db, derive_username(user), user.id)
        updated = True
    if settings.AUTH_MODE == "local" and not user.password_hash:
        user.password_hash = hash_password(settings.SEED_BACKFILL_PASSWORD.get_secret_value())
        updated = True
    if user.role not in (Role.ADMIN.value, Role.USER.value):
        user.role = Role.normalize(user.role).value
        updated = True
    if user.active is None:
        user.active = True
        updated = True
    if updated:
        # Flush per row so the next uniqueness check sees this username.
        db.flush()
    return updated


def seed_users(db: Session, settings: "Settings") -> int:
    """Run the full seeding pass in one transaction; returns the number of backfilled rows."""
    ensure_admin(db, settings)
    backfilled = sum(
        1 for user in user_repo.list_users(db) if backfill_user(db, user, settings)
    )
    db.commit()
    if backfilled:
        logger.info("Backfilled legacy users", extra={"backfilled_count": backfilled})
    return backfilled
