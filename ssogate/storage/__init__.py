"""Storage module for ssogate.

Provides SQLite storage for the user accounts SSO sign-ins map to.
"""

from ssogate.storage.database import (
    DEFAULT_DB_PATH,
    Database,
    DatabaseError,
    create_database_engine,
)
from ssogate.storage.models import AppUser, Base
from ssogate.storage.users import SQLAlchemyUserRepository

__all__ = [
    # Database management
    "DEFAULT_DB_PATH",
    "Database",
    "DatabaseError",
    "create_database_engine",
    # Models
    "AppUser",
    "Base",
    # Repositories
    "SQLAlchemyUserRepository",
]
