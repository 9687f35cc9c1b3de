"""
Database connection management utility with proper resource cleanup and monitoring.
Provides context managers and a connection registry so the live database file can be
checkpointed, released and replaced without leaking handles.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import time
import weakref
from pathlib import Path
from typing import Any, Generator, Iterable

import duckdb

from config.sync import SyncSettings


class ConnectionMonitor:
    """Monitors database connection lifecycle to detect leaks."""

    def __init__(self):
        self._active_connections: dict[int, dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._logger = logging.getLogger(__name__)

    def register_connection(
        self, conn: duckdb.DuckDBPyConnection, db_path: str
    ) -> None:
        """Register a new connection for monitoring."""
        with self._lock:
            conn_id = id(conn)
            self._active_connections[conn_id] = {
                "db_path": db_path,
                "created_at": time.time(),
                "thread_id": threading.get_ident(),
                "weakref": weakref.ref(conn, self._connection_finalized),
            }
            self._logger.debug(f"Registered connection {conn_id} to {db_path}")

    def unregister_connection(self, conn: duckdb.DuckDBPyConnection) -> None:
        """Unregister a connection when properly closed."""
        with self._lock:
            conn_id = id(conn)
            if conn_id in self._active_connections:
                db_path = self._active_connections[conn_id]["db_path"]
                del self._active_connections[conn_id]
                self._logger.debug(f"Unregistered connection {conn_id} to {db_path}")

    def _connection_finalized(self, weakref_obj) -> None:
        """Called when a connection is garbage collected without proper cleanup."""
        with self._lock:
            for conn_id, info in list(self._active_connections.items()):
                if info["weakref"] is weakref_obj:
                    self._logger.warning(
                        f"Connection {conn_id} to {info['db_path']} was garbage collected without explicit close()"
                    )
                    del self._active_connections[conn_id]
                    break

    def get_active_connections(self) -> dict[int, dict[str, Any]]:
        """Get information about currently active connections."""
        with self._lock:
            return dict(self._active_connections)

    def close_connections_for(self, db_path: str) -> int:
        """Close every live connection registered against ``db_path``."""
        with self._lock:
            targets = [
                (conn_id, info["weakref"]())
                for conn_id, info in self._active_connections.items()
                if info["db_path"] == db_path
            ]
            for conn_id, _ in targets:
                del self._active_connections[conn_id]

        closed = 0
        for conn_id, conn in targets:
            if conn is None:
                continue
            try:
                conn.close()
                closed += 1
            except duckdb.Error as e:
                # The file may already be gone; the handle is released either way
                self._logger.debug(f"Ignoring close error on connection {conn_id}: {e}")
        return closed


# Global connection monitor instance
_connection_monitor = ConnectionMonitor()


@contextlib.contextmanager
def get_db_connection(
    db_path: Path, read_only: bool = True, logger_obj: logging.Logger | None = None
) -> Generator[duckdb.DuckDBPyConnection, None, None]:
    """
    Context manager for DuckDB connections with proper resource cleanup.

    Args:
        db_path: Path to the database file
        read_only: Whether to open in read-only mode
        logger_obj: Optional logger for debug messages

    Yields:
        DuckDB connection that will be automatically closed

    Example:
        with get_db_connection(db_path) as conn:
            result = conn.execute("SELECT * FROM table").fetchall()
    """
    if logger_obj is None:
        logger_obj = logging.getLogger(__name__)

    if not db_path.exists():
        if read_only:
            raise FileNotFoundError(f"Database {db_path} does not exist")
        logger_obj.info(f"Database {db_path} does not exist. It will be created.")

    conn = None
    try:
        conn = duckdb.connect(database=db_path.as_posix(), read_only=read_only)
        _connection_monitor.register_connection(conn, _registry_key(db_path))

        # Test connection
        conn.execute("SELECT 1")
        logger_obj.debug(
            f"Successfully connected to DuckDB at {db_path} (read_only={read_only})"
        )

        yield conn

    except Exception as e:
        logger_obj.error(
            f"Error connecting to database at {db_path}: {e}", exc_info=True
        )
        raise

    finally:
        if conn:
            _connection_monitor.unregister_connection(conn)
            conn.close()
            logger_obj.debug(f"Connection to {db_path} closed successfully")


def checkpoint_database(db_path: Path, logger_obj: logging.Logger | None = None) -> bool:
    """
    Flush the write-ahead log into the main database file.

    Returns True when a checkpoint ran. A missing file or a file DuckDB cannot
    open is logged and reported as False; callers continue with the file as-is.
    """
    if logger_obj is None:
        logger_obj = logging.getLogger(__name__)

    if not db_path.exists():
        return False

    try:
        with get_db_connection(db_path, read_only=False, logger_obj=logger_obj) as conn:
            conn.execute("FORCE CHECKPOINT")
        logger_obj.debug(f"Checkpointed {db_path}")
        return True
    except Exception as e:
        logger_obj.warning(f"WAL checkpoint failed for {db_path}: {e}")
        return False


def close_connections(db_path: Path, logger_obj: logging.Logger | None = None) -> int:
    """Release every open handle to ``db_path`` before the file is replaced."""
    if logger_obj is None:
        logger_obj = logging.getLogger(__name__)

    closed = _connection_monitor.close_connections_for(_registry_key(db_path))
    if closed:
        logger_obj.info(f"Closed {closed} open connection(s) to {db_path}")
    return closed


def side_file_paths(db_path: Path, suffixes: Iterable[str] | None = None) -> list[Path]:
    """Write-ahead side files that belong to ``db_path``."""
    suffixes = SyncSettings.DB_SIDE_FILE_SUFFIXES if suffixes is None else suffixes
    return [db_path.with_name(db_path.name + suffix) for suffix in suffixes]


def has_pending_wal(db_path: Path) -> bool:
    """True when a non-empty write-ahead log sits next to the database."""
    return any(p.exists() and p.stat().st_size > 0 for p in side_file_paths(db_path))


def remove_side_files(db_path: Path, logger_obj: logging.Logger | None = None) -> None:
    """Delete write-ahead side files of ``db_path`` if present."""
    if logger_obj is None:
        logger_obj = logging.getLogger(__name__)

    for side_file in side_file_paths(db_path):
        if side_file.exists():
            side_file.unlink()
            logger_obj.debug(f"Removed side file {side_file}")


def _registry_key(db_path: Path) -> str:
    return str(Path(db_path).resolve())
