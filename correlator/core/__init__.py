"""Core app configuration and database."""

from correlator.core.config import get_settings, settings
from correlator.core.database import get_db, get_session_factory

__all__ = ["get_settings", "settings", "get_db", "get_session_factory"]
