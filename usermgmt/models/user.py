"""ORM model for local user profiles (auth and RBAC)."""

import enum

from sqlalchemy import Boolean, Column, Integer, String
from sqlalchemy.orm import relationship

from usermgmt.models.base import Base


class Role(str, enum.Enum):
    """Managed roles. Anything else is treated as USER."""

    ADMIN = "admin"
    USER = "user"

    @classmethod
    def normalize(cls, value: str | None) -> "Role":
        """Map a free-form role string to a managed role, defaulting to USER."""
        candidate = (value or "").strip().lower()
        for role in cls:
            if role.value == candidate:
                return role
        return cls.USER


class User(Base):
    """
    Local user profile.

    Exactly one of password_hash (AUTH_MODE=local) or external_id
    (AUTH_MODE=oidc, the identity provider's user id) is populated.
    An inactive user must never authenticate or hold a usable refresh token.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(320), nullable=False, unique=True, index=True)
    username = Column(String(255), nullable=False, unique=True, index=True)
    role = Column(String(32), nullable=False, default=Role.USER.value)
    active = Column(Boolean, nullable=False, default=True)
    password_hash = Column(String(255), nullable=True)
    external_id = Column(String(255), nullable=True, unique=True)

    refresh_tokens = relationship(
        "RefreshToken",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    @property
    def is_admin(self) -> bool:
        return (self.role or "").lower() == Role.ADMIN.value
