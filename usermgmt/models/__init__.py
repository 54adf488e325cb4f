"""SQLAlchemy ORM models."""

from usermgmt.models.base import Base
from usermgmt.models.refresh_token import RefreshToken
from usermgmt.models.user import Role, User

__all__ = ["Base", "RefreshToken", "Role", "User"]
