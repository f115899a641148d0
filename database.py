import logging
import queue
import sqlite3
import threading
from contextlib import contextmanager

DB_NAME = 'tick_data.db'

logger = logging.getLogger(__name__)


def _apply_schema(conn: sqlite3.Connection) -> None:
    cursor = conn.cursor()

    # Raw tick samples. Times are epoch microseconds (UTC) so sub-second ticks
    # sort and range-scan as plain integers.
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS tick_data (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            time_us INTEGER NOT NULL,
            symbol TEXT NOT NULL,
            bid_price REAL,
            ask_price REAL,
            last_price REAL NOT NULL,
            volume REAL NOT NULL DEFAULT 0,
            source TEXT NOT NULL DEFAULT '',
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(time_us, symbol, source)
        )
    ''')

    # Replay scans are (symbol?, time range) ordered by (time, id).
    cursor.execute('''
        CREATE INDEX IF NOT EXISTS idx_tick_symbol_time
        ON tick_data(symbol, time_us, id)
    ''')
    cursor.execute('''
        CREATE INDEX IF NOT EXISTS idx_tick_time
        ON tick_data(time_us, id)
    ''')
    conn.commit()


def get_db_connection(db_path=None):
    """Get a standalone database connection (scripts and tests)."""
    conn = sqlite3.connect(db_path or DB_NAME)
    conn.execute('PRAGMA foreign_keys = ON;')
    return conn


def init_database(db_path=None):
    """Initialize the SQLite database with the tick schema."""
    path = db_path or DB_NAME
    conn = get_db_connection(path)
    try:
        _apply_schema(conn)
    finally:
        conn.close()
    logger.info("Database %s initialized successfully.", path)


class PoolClosedError(RuntimeError):
    pass


class ConnectionPool:
    """
    Bounded pool of SQLite connections shared by all replay requests.

    Created once at startup and handed to the tick store; closed at shutdown.
    Connections are opened lazily up to `max_size`; callers block up to
    `timeout` seconds when all are checked out.
    """

    def __init__(self, db_path, *, max_size=10, timeout=10.0):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.db_path = db_path
        self.max_size = int(max_size)
        self.timeout = float(timeout)
        self._idle = queue.LifoQueue(maxsize=self.max_size)
        self._lock = threading.Lock()
        self._opened = 0
        self._closed = False

    def _open(self):
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.execute('PRAGMA foreign_keys = ON;')
        conn.execute('PRAGMA journal_mode = WAL;')
        return conn

    def acquire(self):
        if self._closed:
            raise PoolClosedError("connection pool is closed")
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            pass
        with self._lock:
            if self._opened < self.max_size:
                self._opened += 1
                try:
                    return self._open()
                except sqlite3.Error:
                    self._opened -= 1
                    raise
        try:
            return self._idle.get(timeout=self.timeout)
        except queue.Empty:
            raise TimeoutError(
                f"no database connection available within {self.timeout:.1f}s"
            ) from None

    def release(self, conn):
        if self._closed:
            conn.close()
            return
        try:
            conn.rollback()
        except sqlite3.Error:
            conn.close()
            with self._lock:
                self._opened -= 1
            return
        self._idle.put_nowait(conn)

    @contextmanager
    def connection(self):
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    def close(self):
        self._closed = True
        while True:
            try:
                conn = self._idle.get_nowait()
            except queue.Empty:
                break
            conn.close()
        with self._lock:
            self._opened = 0
        logger.info("Connection pool for %s closed", self.db_path)

    @property
    def closed(self):
        return self._closed


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    init_database()
