"""Database module for SQLAlchemy models and session management."""

from cutlist_intake.database.base import Base, close_database, create_session_factory, init_database
from cutlist_intake.database.models import ParseSessionRecord

__all__ = [
    "Base",
    "create_session_factory",
    "init_database",
    "close_database",
    "ParseSessionRecord",
]
