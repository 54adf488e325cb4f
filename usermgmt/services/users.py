"""
Admin user management. Each public function is one unit of work: it commits
on success and leaves the database untouched when it raises.

In oidc mode every mutation is mirrored to the identity provider first; the
local row only changes once the remote step that matters has succeeded.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from usermgmt.core.security import hash_password
from usermgmt.models import Role, User
from usermgmt.repositories import users as user_repo
from usermgmt.schemas.user import UserCreate, UserUpdate
from usermgmt.services import refresh_tokens
from usermgmt.services.identity_broker import (
    STEP_PROFILE,
    STEP_SERVICE_TOKEN,
    IdentityBroker,
    RemoteUserCommand,
)

if TYPE_CHECKING:
    from usermgmt.core.config import Settings

logger = logging.getLogger(__name__)


class UserNotFoundError(Exception):
    """Raised when the target user id does not exist."""

    def __init__(self, user_id: int) -> None:
        self.user_id = user_id
        self.message = f"User {user_id} not found."
        super().__init__(self.message)


class UserConflictError(Exception):
    """Raised when a username or email is already taken by another user."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class IdentitySyncError(Exception):
    """Raised when the identity provider rejected or could not perform a required step."""

    def __init__(self, message: str, failed_steps: list[str] | None = None) -> None:
        self.message = message
        self.failed_steps = failed_steps or []
        super().__init__(message)


def _require_broker(settings: Settings, broker: IdentityBroker | None) -> IdentityBroker | None:
    if settings.AUTH_MODE != "oidc":
        return None
    if broker is None:
        raise IdentitySyncError("Identity provider is not configured.")
    return broker


def _ensure_unique(db: Session, username: str, email: str, exclude_id: int | None = None) -> None:
    if user_repo.username_taken(db, username, exclude_id):
        raise UserConflictError(f"Username '{username}' is already taken.")
    if user_repo.email_taken(db, email, exclude_id):
        raise UserConflictError(f"Email '{email}' is already in use.")


def _commit(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise UserConflictError("Username or email is already in use.") from e


def get_user_or_404(db: Session, user_id: int) -> User:
    user = user_repo.get_user(db, user_id)
    if user is None:
        raise UserNotFoundError(user_id)
    return user


def list_users(db: Session) -> list[User]:
    return user_repo.list_users(db)


def search_users(db: Session, query: str | None) -> list[User]:
    """Blank queries match nothing and never reach the database."""
    term = (query or "").strip()
    if not term:
        return []
    return user_repo.search_users(db, term)


def create_user(
    db: Session,
    body: UserCreate,
    settings: Settings,
    broker: IdentityBroker | None = None,
) -> tuple[User, list[str]]:
    """Create a user; returns it with the names of non-fatal sync steps that failed."""
    broker = _require_broker(settings, broker)
    _ensure_unique(db, body.username, body.email)

    role = body.role or Role.USER.value
    active = True if body.active is None else body.active
    user = User(
        name=body.name,
        email=body.email,
        username=body.username,
        role=role,
        active=active,
    )

    warnings: list[str] = []
    if broker is None:
        user.password_hash = hash_password(body.password)
    else:
        result = broker.create_remote_user(
            RemoteUserCommand(
                username=body.username,
                email=body.email,
                name=body.name,
                role=role,
                active=active,
                password=body.password,
            )
        )
        if result.external_id is None:
            raise IdentitySyncError(
                "Failed to create user in identity provider.", result.failed_steps
            )
        user.external_id = result.external_id
        warnings = result.failed_steps

    db.add(user)
    _commit(db)
    db.refresh(user)
    logger.info(
        "User created",
        extra={"user_id": user.id, "role": user.role, "sync_warnings": ",".join(warnings)},
    )
    return user, warnings


def update_user(
    db: Session,
    user_id: int,
    body: UserUpdate,
    settings: Settings,
    broker: IdentityBroker | None = None,
) -> tuple[User, list[str]]:
    """Partial update: fields omitted or null keep their current value."""
    broker = _require_broker(settings, broker)
    user = get_user_or_404(db, user_id)
    changes = body.model_dump(exclude_none=True)
    password = changes.pop("password", None)

    target = {
        "name": changes.get("name", user.name),
        "email": changes.get("email", user.email),
        "username": changes.get("username", user.username),
        "role": changes.get("role", user.role),
        "active": changes.get("active", user.active),
    }
    _ensure_unique(db, target["username"], target["email"], exclude_id=user.id)

    warnings: list[str] = []
    if broker is not None:
        result = broker.update_remote_user(
            user.external_id,
            RemoteUserCommand(password=password, **target),
        )
        fatal = {STEP_SERVICE_TOKEN, STEP_PROFILE} & set(result.failed_steps)
        if fatal:
            raise IdentitySyncError(
                "Failed to update user in identity provider.", result.failed_steps
            )
        warnings = result.failed_steps
    elif password is not None:
        user.password_hash = hash_password(password)

    for field, value in changes.items():
        setattr(user, field, value)
    if not user.active:
        refresh_tokens.revoke_all_for_user(db, user)

    _commit(db)
    db.refresh(user)
    logger.info(
        "User updated",
        extra={
            "user_id": user.id,
            "fields": ",".join(sorted(changes)),
            "sync_warnings": ",".join(warnings),
        },
    )
    return user, warnings


def delete_user(
    db: Session,
    user_id: int,
    settings: Settings,
    broker: IdentityBroker | None = None,
) -> None:
    """
    Delete a user after revoking its sessions. In oidc mode the remote identity
    goes first; if that fails the local row is kept so the admin can retry.
    """
    broker = _require_broker(settings, broker)
    user = get_user_or_404(db, user_id)
    if broker is not None and not broker.delete_remote_user(user.external_id):
        raise IdentitySyncError("Failed to delete user in identity provider.")

    refresh_tokens.revoke_all_for_user(db, user)
    db.delete(user)
    db.commit()
    logger.info("User deleted", extra={"user_id": user_id})


def force_logout(
    db: Session,
    user_id: int,
    settings: Settings,
    broker: IdentityBroker | None = None,
) -> int:
    """Administrative logout: end every session of the user. Returns revoked local tokens."""
    broker = _require_broker(settings, broker)
    user = get_user_or_404(db, user_id)
    if broker is not None and not broker.logout_remote_user(user.external_id):
        raise IdentitySyncError("Failed to end user sessions in identity provider.")
    revoked = refresh_tokens.revoke_all_for_user(db, user)
    db.commit()
    return revoked
