"""Shared FastAPI dependencies: settings-driven services and the auth gates."""

from collections.abc import Callable
from typing import Annotated, Any

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from usermgmt.core.config import Settings, get_settings
from usermgmt.core.database import get_db
from usermgmt.core.security import decode_access_token
from usermgmt.models import User
from usermgmt.services.identity_broker import IdentityBroker
from usermgmt.services.oidc import OidcClient, get_oidc_token_verifier, principal_from_claims
from usermgmt.services.sessions import (
    LocalSessionBackend,
    OidcSessionBackend,
    SessionBackend,
    resolve_local_user,
)

security = HTTPBearer(auto_error=False)

SettingsDep = Annotated[Settings, Depends(get_settings)]
DbDep = Annotated[Session, Depends(get_db)]

TokenVerifier = Callable[[str], dict[str, Any]]


def get_token_verifier(settings: SettingsDep) -> TokenVerifier:
    """Access-token verifier for the active mode. Verifiers raise jwt.PyJWTError."""
    if settings.AUTH_MODE == "oidc":
        realm_url = settings.oidc_realm_url
        verifier = get_oidc_token_verifier(
            f"{realm_url}/protocol/openid-connect/certs", realm_url
        )
        return verifier.verify
    return lambda token: decode_access_token(token, settings)


def get_oidc_client(settings: SettingsDep) -> OidcClient | None:
    if settings.AUTH_MODE != "oidc":
        return None
    return OidcClient(settings)


def get_identity_broker(
    settings: SettingsDep,
    oidc_client: Annotated[OidcClient | None, Depends(get_oidc_client)],
) -> IdentityBroker | None:
    """Broker for oidc mode; None in local mode where there is nothing to mirror."""
    if oidc_client is None:
        return None
    return IdentityBroker(settings, oidc_client=oidc_client)


def get_session_backend(
    settings: SettingsDep,
    oidc_client: Annotated[OidcClient | None, Depends(get_oidc_client)],
) -> SessionBackend:
    if oidc_client is None:
        return LocalSessionBackend(settings)
    return OidcSessionBackend(settings, oidc_client)


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: DbDep,
    verify: Annotated[TokenVerifier, Depends(get_token_verifier)],
) -> User:
    """
    Require a valid Bearer access token and return the caller's local profile.
    401 for a missing or invalid token, 403 when no active profile backs it.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        claims = verify(credentials.credentials)
    except jwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user = resolve_local_user(db, *principal_from_claims(claims))
    if user is None or not user.active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No active profile for this account",
        )
    return user


CurrentUserDep = Annotated[User, Depends(get_current_user)]


def require_admin(current_user: CurrentUserDep) -> User:
    """Require the caller's local role to be 'admin'. Raises 403 otherwise."""
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


AdminDep = Annotated[User, Depends(require_admin)]
