"""Login / refresh / logout for both deployment modes behind one interface."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from sqlalchemy.orm import Session

from usermgmt.core.security import create_access_token, dummy_password_hash, verify_password
from usermgmt.models import User
from usermgmt.repositories import users as user_repo
from usermgmt.services import refresh_tokens
from usermgmt.services.oidc import OidcClient, TokenSet, principal_from_claims, unverified_claims

if TYPE_CHECKING:
    from usermgmt.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionGrant:
    """What the auth router needs to answer a successful login or refresh."""

    access_token: str
    refresh_token: str
    refresh_ttl_seconds: int
    user: User


class SessionBackend(Protocol):
    def login(self, db: Session, username: str, password: str) -> SessionGrant | None: ...

    def refresh(self, db: Session, refresh_token: str | None) -> SessionGrant | None: ...

    def logout(self, db: Session, refresh_token: str | None) -> None: ...


class LocalSessionBackend:
    """bcrypt credentials, locally signed access tokens, server-tracked refresh tokens."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def _grant(self, user: User, refresh_token: str) -> SessionGrant:
        access_token = create_access_token(user.username, user.role, self.settings)
        return SessionGrant(
            access_token=access_token,
            refresh_token=refresh_token,
            refresh_ttl_seconds=self.settings.REFRESH_TOKEN_TTL_SECONDS,
            user=user,
        )

    def login(self, db: Session, username: str, password: str) -> SessionGrant | None:
        user = user_repo.find_by_username(db, username)
        stored_hash = user.password_hash if user is not None else None
        # Unknown users are checked against a dummy hash so timing does not reveal them.
        password_ok = verify_password(password, stored_hash or dummy_password_hash())
        if user is None or not user.active or not stored_hash or not password_ok:
            logger.info("Login rejected", extra={"username": username})
            return None
        refresh_token = refresh_tokens.issue(db, user, self.settings.REFRESH_TOKEN_TTL_SECONDS)
        db.commit()
        logger.info("Login succeeded", extra={"user_id": user.id})
        return self._grant(user, refresh_token)

    def refresh(self, db: Session, refresh_token: str | None) -> SessionGrant | None:
        rotated = refresh_tokens.rotate(
            db, refresh_token, self.settings.REFRESH_TOKEN_TTL_SECONDS
        )
        if rotated is None:
            return None
        db.commit()
        return self._grant(rotated.user, rotated.plain_token)

    def logout(self, db: Session, refresh_token: str | None) -> None:
        user = refresh_tokens.revoke_by_plain_token(db, refresh_token)
        if user is not None:
            refresh_tokens.revoke_all_for_user(db, user)
        db.commit()


def resolve_local_user(db: Session, preferred_username: str, subject: str) -> User | None:
    """Find the local profile behind provider claims: preferred_username, then sub."""
    user = None
    if preferred_username:
        user = user_repo.find_by_username(db, preferred_username)
    if user is None and subject:
        user = user_repo.find_by_username(db, subject) or user_repo.find_by_external_id(
            db, subject
        )
    return user


class OidcSessionBackend:
    """
    Credentials and tokens live at the identity provider. The local profile's
    active flag is an extra gate the provider does not know about.
    """

    def __init__(self, settings: Settings, oidc_client: OidcClient) -> None:
        self.settings = settings
        self.oidc_client = oidc_client

    def _grant(self, db: Session, token_set: TokenSet | None) -> SessionGrant | None:
        if token_set is None or not token_set.refresh_token:
            return None
        claims = unverified_claims(token_set.access_token)
        if claims is None:
            logger.warning("Provider access token is not a readable JWT")
            return None
        user = resolve_local_user(db, *principal_from_claims(claims))
        if user is None or not user.active:
            logger.info(
                "Provider session rejected: local profile missing or inactive",
                extra={"sub": claims.get("sub")},
            )
            return None
        return SessionGrant(
            access_token=token_set.access_token,
            refresh_token=token_set.refresh_token,
            # 0 means no expiry upstream (offline tokens); Max-Age=0 would delete the cookie.
            refresh_ttl_seconds=(
                token_set.refresh_expires_in or self.settings.REFRESH_TOKEN_TTL_SECONDS
            ),
            user=user,
        )

    def login(self, db: Session, username: str, password: str) -> SessionGrant | None:
        grant = self._grant(db, self.oidc_client.password_grant(username, password))
        if grant is None:
            logger.info("Login rejected", extra={"username": username})
        return grant

    def refresh(self, db: Session, refresh_token: str | None) -> SessionGrant | None:
        if not refresh_token or not refresh_token.strip():
            return None
        return self._grant(db, self.oidc_client.refresh_grant(refresh_token))

    def logout(self, db: Session, refresh_token: str | None) -> None:
        if refresh_token and refresh_token.strip():
            self.oidc_client.logout(refresh_token)
