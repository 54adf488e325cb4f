"""Request/response schemas for user profile endpoints."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

RoleName = Literal["admin", "user"]


def _strip_required(v: str | None) -> str | None:
    if v is None:
        return None
    v = v.strip()
    if not v:
        raise ValueError("must not be blank")
    return v


def _check_email(v: str | None) -> str | None:
    if v is not None and ("@" not in v or v.startswith("@") or v.endswith("@")):
        raise ValueError("must be an email address")
    return v


class UserCreate(BaseModel):
    """Admin create request. role defaults to 'user', active to true."""

    name: str = Field(..., max_length=255)
    email: str = Field(..., max_length=320)
    username: str = Field(..., max_length=255)
    password: str = Field(..., min_length=1, max_length=128)
    role: RoleName | None = None
    active: bool | None = None

    @field_validator("name", "email", "username")
    @classmethod
    def strip_fields(cls, v: str) -> str:
        return _strip_required(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("password")
    @classmethod
    def reject_blank_password(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v


class UserUpdate(BaseModel):
    """Partial update: only fields that are provided and non-null change."""

    name: str | None = Field(default=None, max_length=255)
    email: str | None = Field(default=None, max_length=320)
    username: str | None = Field(default=None, max_length=255)
    password: str | None = Field(default=None, min_length=1, max_length=128)
    role: RoleName | None = None
    active: bool | None = None

    @field_validator("name", "email", "username")
    @classmethod
    def strip_fields(cls, v: str | None) -> str | None:
        return _strip_required(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str | None) -> str | None:
        return _check_email(v)


class UserResponse(BaseModel):
    """Profile DTO. Password material is never included."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    username: str
    role: str
    active: bool


class UserSummary(BaseModel):
    """Search hit."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
