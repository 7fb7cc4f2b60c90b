"""
Database access for accounts and chat history.

SQLite is the default store. Relay turns write history from worker threads
while request handlers read it, so SQLite connections run in WAL mode with
a busy timeout and may be shared across threads.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from chat_relay.db.base import Base

logger = logging.getLogger(__name__)

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA foreign_keys=ON",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA busy_timeout=5000",
)


def _apply_sqlite_pragmas(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    for pragma in SQLITE_PRAGMAS:
        cursor.execute(pragma)
    cursor.close()


class DatabaseManager:
    """Owns the engine and hands out short-lived sessions."""

    def __init__(
        self,
        database_url: str = "sqlite:///data/chat_relay.db",
        echo: bool = False,
    ) -> None:
        """
        Initialize the database manager. The engine is created on first use.

        Args:
            database_url: SQLAlchemy database URL; ``sqlite://`` gives a
                private in-memory database
            echo: Enable SQL echo logging
        """
        self.database_url = database_url
        self._echo = echo
        self._engine: Engine | None = None
        self._sessions: sessionmaker[Session] | None = None

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = self._build_engine()
        return self._engine

    def _build_engine(self) -> Engine:
        if not self.is_sqlite:
            return create_engine(self.database_url, echo=self._echo, pool_pre_ping=True)

        options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if self.database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every thread sees an empty database
            options["poolclass"] = StaticPool
        else:
            db_file = Path(self.database_url[len("sqlite:///"):])
            db_file.parent.mkdir(parents=True, exist_ok=True)

        engine = create_engine(self.database_url, echo=self._echo, **options)
        event.listen(engine, "connect", _apply_sqlite_pragmas)
        logger.debug(f"SQLite engine ready for {self.database_url}")
        return engine

    @property
    def session_factory(self) -> sessionmaker[Session]:
        if self._sessions is None:
            # Rows are returned to callers after the session closes
            self._sessions = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        return self._sessions

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Unit of work: commits on success, rolls back on any exception.

        Usage:
            with db_manager.get_session() as session:
                session.add(user)
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def init_db(self) -> None:
        """Create the users and messages tables if missing."""
        Base.metadata.create_all(bind=self.engine)
        logger.info(f"Database ready: tables {', '.join(sorted(Base.metadata.tables))}")

    def health_check(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False
        return True

    def close(self) -> None:
        """Dispose of the engine. The manager can be reused afterwards."""
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        self._sessions = None
        logger.info("Database connection closed")
