"""Handle on the local SQLite database file that gets synchronized.

The schema belongs to the rest of the application. This module only owns the
engine lifecycle around the file, because sync has to touch the file on disk
directly:

    - **Checkpoint before upload**: in WAL mode recent writes live in the
      ``-wal`` side file. Uploading the main file without a checkpoint would
      publish a stale or partial database.

    - **Dispose before replace**: pooled connections keep the old inode open.
      They must be closed before a downloaded copy is moved over the file,
      and the ``-wal``/``-shm`` side files removed so SQLite does not replay
      them against the new content.
"""
import logging
import sqlite3
from pathlib import Path

from sqlalchemy import event as sa_event
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel, create_engine

logger = logging.getLogger(__name__)

SIDE_FILE_SUFFIXES = ("-wal", "-shm")


def set_sqlite_pragma(dbapi_connection, connection_record):
    """Configure SQLite pragmas on each new connection."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class LocalDatabase:
    """Lazily created engine bound to one database file."""

    def __init__(self, path: Path, echo: bool = False):
        self.path = Path(path)
        self.echo = echo
        self._engine = None

    @property
    def engine(self):
        if self._engine is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._engine = create_engine(
                f"sqlite:///{self.path}",
                connect_args={"check_same_thread": False},
                echo=self.echo,
            )
            sa_event.listen(self._engine, "connect", set_sqlite_pragma)
        return self._engine

    def exists(self) -> bool:
        return self.path.exists()

    def create_tables(self) -> None:
        """Create tables registered by the application's models."""
        SQLModel.metadata.create_all(self.engine)

    def checkpoint(self) -> bool:
        """Fold the WAL back into the main file. Returns False if it could not."""
        if not self.path.exists():
            return False
        try:
            with self.engine.connect() as connection:
                connection.execute(text("PRAGMA wal_checkpoint(TRUNCATE)"))
            return True
        except (SQLAlchemyError, sqlite3.Error) as e:
            # Not fatal: the file may not be in WAL mode at all
            logger.warning(f"WAL checkpoint failed for {self.path}: {e}")
            return False
        finally:
            self.dispose()

    def dispose(self) -> None:
        """Close every pooled connection to the file."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def remove_side_files(self) -> None:
        for suffix in SIDE_FILE_SUFFIXES:
            side_file = self.path.with_name(self.path.name + suffix)
            side_file.unlink(missing_ok=True)
