"""Pydantic request/response schemas."""

from usermgmt.schemas.auth import LoginRequest, LoginResponse
from usermgmt.schemas.health import HealthResponse
from usermgmt.schemas.user import UserCreate, UserResponse, UserSummary, UserUpdate

__all__ = [
    "HealthResponse",
    "LoginRequest",
    "LoginResponse",
    "UserCreate",
    "UserResponse",
    "UserSummary",
    "UserUpdate",
]
