"""SQLite database integration."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

# Default database location
DEFAULT_DB_DIR = Path.home() / ".ssogate"
DEFAULT_DB_PATH = DEFAULT_DB_DIR / "ssogate.db"


class DatabaseError(Exception):
    """Base exception for database errors."""


def create_database_engine(db_path: Path | None = None, echo: bool = False) -> Engine:
    """Create a SQLAlchemy engine for a SQLite database file.

    Args:
        db_path: Path to the database file. Defaults to ``~/.ssogate/ssogate.db``.
        echo: Whether to echo SQL statements (for debugging).

    Returns:
        Configured SQLAlchemy Engine.
    """
    if db_path is None:
        db_path = DEFAULT_DB_PATH

    db_path.parent.mkdir(parents=True, exist_ok=True)

    return create_engine(
        f"sqlite:///{db_path}",
        echo=echo,
        pool_pre_ping=True,
        # Sessions are opened from Flask worker threads
        connect_args={"check_same_thread": False},
    )


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


class Database:
    """Database manager with a lazily created engine and session factory."""

    def __init__(self, db_path: Path | None = None, echo: bool = False) -> None:
        """Initialize database manager.

        Args:
            db_path: Path to the database file.
            echo: Whether to echo SQL statements.
        """
        self._db_path = db_path or DEFAULT_DB_PATH
        self._engine: Engine | None = None
        self._session_factory: sessionmaker[Session] | None = None
        self._echo = echo

    @property
    def path(self) -> Path:
        return self._db_path

    @property
    def engine(self) -> Engine:
        """Get or create the database engine."""
        if self._engine is None:
            self._engine = create_database_engine(self._db_path, self._echo)
        return self._engine

    @property
    def session_factory(self) -> sessionmaker[Session]:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = create_session_factory(self.engine)
        return self._session_factory

    def get_session(self) -> Session:
        """Create a new database session."""
        return self.session_factory()

    def init_db(self) -> None:
        """Create all tables defined in the models."""
        from ssogate.storage.models import Base

        Base.metadata.create_all(self.engine)

    def verify_connection(self) -> bool:
        """Verify the database can be opened and queried.

        Raises:
            DatabaseError: If the connection fails.
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            return True
        except SQLAlchemyError as e:
            raise DatabaseError(f"Database connection failed: {e}") from e

    def close(self) -> None:
        """Close database connections."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
