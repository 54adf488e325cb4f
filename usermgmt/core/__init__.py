"""Core app configuration, database and security primitives."""

from usermgmt.core.config import get_settings, settings
from usermgmt.core.database import get_db

__all__ = ["get_settings", "settings", "get_db"]
