"""SQLite connection pool shared by request handlers and the batch scorer."""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from queue import Empty, Queue
from typing import Generator

logger = logging.getLogger(__name__)


class SQLiteConnectionPool:
    """Thread-safe SQLite connection pool.

    Connections are handed between worker threads, so they are opened with
    ``check_same_thread=False``; a connection is only ever used by one thread
    at a time while it is checked out.
    """

    def __init__(self, database: str, max_connections: int = 5, timeout: float = 30.0):
        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        self.database = database
        self.max_connections = max_connections
        self.timeout = timeout
        self._pool: Queue[sqlite3.Connection] = Queue(maxsize=max_connections)
        self._lock = threading.Lock()
        self._created_connections = 0

    def _create_connection(self) -> sqlite3.Connection:
        """Create a new SQLite connection with proper settings."""
        conn = sqlite3.connect(self.database, timeout=self.timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute(f"PRAGMA busy_timeout = {int(self.timeout * 1000)}")
        return conn

    @property
    def created_connections(self) -> int:
        with self._lock:
            return self._created_connections

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a connection from the pool or create a new one if needed."""
        connection = None
        try:
            connection = self._pool.get(block=False)
        except Empty:
            create = False
            with self._lock:
                if self._created_connections < self.max_connections:
                    self._created_connections += 1
                    create = True
            if create:
                try:
                    connection = self._create_connection()
                except Exception:
                    with self._lock:
                        self._created_connections -= 1
                    raise
                logger.debug("Created new connection (total: %s)", self._created_connections)
            else:
                # At the limit: wait for another thread to return one
                connection = self._pool.get(block=True, timeout=self.timeout)

        try:
            yield connection
        finally:
            try:
                connection.rollback()
                self._pool.put(connection)
            except Exception as e:
                logger.error("Error returning connection to pool: %s", e)
                try:
                    connection.close()
                finally:
                    with self._lock:
                        self._created_connections -= 1

    def close_all(self) -> None:
        """Close every idle connection; checked-out connections are left alone."""
        while True:
            try:
                connection = self._pool.get(block=False)
            except Empty:
                break
            try:
                connection.close()
            except sqlite3.Error as e:
                logger.warning("Error closing pooled connection: %s", e)
            with self._lock:
                self._created_connections -= 1
