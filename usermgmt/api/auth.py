"""Login, refresh and logout. The refresh token only ever travels in an HttpOnly cookie."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse

from usermgmt.api.deps import DbDep, SettingsDep, get_session_backend
from usermgmt.core.config import Settings
from usermgmt.schemas.auth import LoginRequest, LoginResponse
from usermgmt.schemas.user import UserResponse
from usermgmt.services.sessions import SessionBackend, SessionGrant

logger = logging.getLogger(__name__)
router = APIRouter()

BackendDep = Annotated[SessionBackend, Depends(get_session_backend)]


def set_refresh_cookie(response: Response, settings: Settings, token: str, max_age: int) -> None:
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=token,
        max_age=max(max_age, 0),
        path="/",
        httponly=True,
        secure=settings.REFRESH_COOKIE_SECURE,
        samesite="strict",
    )


def clear_refresh_cookie(response: Response, settings: Settings) -> None:
    set_refresh_cookie(response, settings, "", 0)


def _unauthorized(settings: Settings, detail: str, clear_cookie: bool) -> JSONResponse:
    response = JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": detail},
    )
    if clear_cookie:
        clear_refresh_cookie(response, settings)
    return response


def _grant_response(grant: SessionGrant, settings: Settings) -> JSONResponse:
    body = LoginResponse(
        access_token=grant.access_token,
        user=UserResponse.model_validate(grant.user),
    )
    response = JSONResponse(content=body.model_dump())
    set_refresh_cookie(response, settings, grant.refresh_token, grant.refresh_ttl_seconds)
    return response


@router.post("/login", response_model=LoginResponse)
def login(
    body: LoginRequest,
    db: DbDep,
    settings: SettingsDep,
    backend: BackendDep,
) -> Response:
    """
    Authenticate with username and password. Returns the access token and profile;
    the refresh token is set as an HttpOnly cookie. Inactive accounts are rejected.
    """
    grant = backend.login(db, body.username, body.password)
    if grant is None:
        return _unauthorized(settings, "Invalid username or password.", clear_cookie=False)
    return _grant_response(grant, settings)


@router.post("/refresh", response_model=LoginResponse)
def refresh(
    request: Request,
    db: DbDep,
    settings: SettingsDep,
    backend: BackendDep,
) -> Response:
    """Exchange the refresh cookie for a new access token and a rotated cookie."""
    grant = backend.refresh(db, request.cookies.get(settings.REFRESH_COOKIE_NAME))
    if grant is None:
        return _unauthorized(settings, "Invalid or expired refresh token.", clear_cookie=True)
    return _grant_response(grant, settings)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    request: Request,
    db: DbDep,
    settings: SettingsDep,
    backend: BackendDep,
) -> Response:
    """Revoke the session behind the refresh cookie (best effort) and always clear the cookie."""
    try:
        backend.logout(db, request.cookies.get(settings.REFRESH_COOKIE_NAME))
    except Exception:
        db.rollback()
        logger.exception("Logout revocation failed; clearing cookie anyway")
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_refresh_cookie(response, settings)
    return response
