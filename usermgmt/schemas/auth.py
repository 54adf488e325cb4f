"""Request/response schemas for auth endpoints."""

from pydantic import BaseModel, Field, field_validator

from usermgmt.core.security import PASSWORD_MAX_LEN, USERNAME_MAX_LEN
from usermgmt.schemas.user import UserResponse


class LoginRequest(BaseModel):
    """Credentials for login."""

    username: str = Field(..., min_length=1, max_length=USERNAME_MAX_LEN, description="Username")
    password: str = Field(..., min_length=1, max_length=PASSWORD_MAX_LEN, description="Password")

    @field_validator("username")
    @classmethod
    def strip_username(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("username must not be blank")
        return v

    @field_validator("password")
    @classmethod
    def reject_blank_password(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("password must not be blank")
        return v


class LoginResponse(BaseModel):
    """Access token plus the caller's profile; the refresh token travels in a cookie."""

    access_token: str = Field(..., description="Bearer access token")
    token_type: str = Field(default="bearer", description="Token type")
    user: UserResponse
