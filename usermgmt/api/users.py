"""User profile endpoints: self-service reads, admin CRUD."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from usermgmt.api.deps import AdminDep, CurrentUserDep, DbDep, SettingsDep, get_identity_broker
from usermgmt.schemas.user import UserCreate, UserResponse, UserSummary, UserUpdate
from usermgmt.services import users as user_service
from usermgmt.services.identity_broker import IdentityBroker
from usermgmt.services.users import IdentitySyncError, UserConflictError, UserNotFoundError

logger = logging.getLogger(__name__)
router = APIRouter()

BrokerDep = Annotated[IdentityBroker | None, Depends(get_identity_broker)]

# Names of identity-sync steps that failed without failing the request.
SYNC_WARNINGS_HEADER = "X-Identity-Sync-Warnings"


def _to_http(e: UserNotFoundError | UserConflictError | IdentitySyncError) -> HTTPException:
    if isinstance(e, UserNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    if isinstance(e, UserConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    logger.error(
        "Identity provider sync failed",
        extra={"reason": e.message, "failed_steps": ",".join(e.failed_steps)},
    )
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)


def _with_warnings(response: Response, warnings: list[str]) -> None:
    if warnings:
        response.headers[SYNC_WARNINGS_HEADER] = ",".join(warnings)


@router.get("", response_model=list[UserResponse])
def list_users(_admin: AdminDep, db: DbDep) -> list[UserResponse]:
    """List all users (admin only)."""
    return [UserResponse.model_validate(u) for u in user_service.list_users(db)]


@router.get("/search", response_model=list[UserSummary])
def search_users(
    _user: CurrentUserDep,
    db: DbDep,
    q: Annotated[str | None, Query(max_length=255)] = None,
) -> list[UserSummary]:
    """Case-insensitive substring search on name or email. Blank queries return []."""
    return [UserSummary.model_validate(u) for u in user_service.search_users(db, q)]


@router.get("/me", response_model=UserResponse)
def get_me(current_user: CurrentUserDep) -> UserResponse:
    """Profile of the authenticated caller."""
    return UserResponse.model_validate(current_user)


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    body: UserCreate,
    response: Response,
    _admin: AdminDep,
    db: DbDep,
    settings: SettingsDep,
    broker: BrokerDep,
) -> UserResponse:
    """Create a user (admin only). role defaults to 'user'."""
    try:
        user, warnings = user_service.create_user(db, body, settings, broker)
    except (UserConflictError, IdentitySyncError) as e:
        raise _to_http(e) from e
    _with_warnings(response, warnings)
    return UserResponse.model_validate(user)


@router.put("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int,
    body: UserUpdate,
    response: Response,
    _admin: AdminDep,
    db: DbDep,
    settings: SettingsDep,
    broker: BrokerDep,
) -> UserResponse:
    """Partially update a user (admin only): only provided, non-null fields change."""
    try:
        user, warnings = user_service.update_user(db, user_id, body, settings, broker)
    except (UserNotFoundError, UserConflictError, IdentitySyncError) as e:
        raise _to_http(e) from e
    _with_warnings(response, warnings)
    return UserResponse.model_validate(user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: int,
    _admin: AdminDep,
    db: DbDep,
    settings: SettingsDep,
    broker: BrokerDep,
) -> Response:
    """Delete a user and revoke all of its sessions (admin only)."""
    try:
        user_service.delete_user(db, user_id, settings, broker)
    except (UserNotFoundError, IdentitySyncError) as e:
        raise _to_http(e) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{user_id}/logout", status_code=status.HTTP_204_NO_CONTENT)
def force_logout(
    user_id: int,
    _admin: AdminDep,
    db: DbDep,
    settings: SettingsDep,
    broker: BrokerDep,
) -> Response:
    """End every session of a user (admin only)."""
    try:
        user_service.force_logout(db, user_id, settings, broker)
    except (UserNotFoundError, IdentitySyncError) as e:
        raise _to_http(e) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)
