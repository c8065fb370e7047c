"""SQLite SQLAlchemy store wrapper."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from core.errors import StoreUnavailable
from memory.schemas import Base


def _enable_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class SQLStore:
    """Provides SQLAlchemy session management for SQLite persistence.

    ``busy_timeout_s`` bounds how long a write waits on a locked database
    before the session is rolled back and ``StoreUnavailable`` is raised.
    """

    def __init__(self, db_path: Path, busy_timeout_s: float = 5.0) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(
            f"sqlite+pysqlite:///{self.db_path}",
            connect_args={"timeout": busy_timeout_s, "check_same_thread": False},
            future=True,
        )
        event.listen(self.engine, "connect", _enable_foreign_keys)
        self._session_factory = sessionmaker(bind=self.engine, future=True)

    def create_all(self) -> None:
        """Create all schema tables if missing."""
        try:
            Base.metadata.create_all(self.engine)
        except OperationalError as exc:
            raise StoreUnavailable(f"Cannot initialize store at {self.db_path}: {exc}") from exc

    def dispose(self) -> None:
        """Release pooled connections."""
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager that commits on success and rolls back on error."""
        sess = self._session_factory()
        try:
            yield sess
            sess.commit()
        except OperationalError as exc:
            sess.rollback()
            raise StoreUnavailable(str(exc.orig or exc)) from exc
        except Exception:
            sess.rollback()
            raise
        finally:
            sess.close()
