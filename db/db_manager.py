# db/db_manager.py
import logging
import sqlite3
import threading
import pathlib
import time
from contextlib import contextmanager
from typing import Optional, Callable

from core.models import SequenceLockTimeout

BASE_DIR = pathlib.Path(__file__).parent
SCHEMA_SQL = (BASE_DIR / "schema_invoicing.sql").read_text(encoding="utf-8")
DB_PATH_DEFAULT = "invoicing.db"
_lock = threading.Lock()

logger = logging.getLogger("db_manager")

MIGRATIONS: list[tuple[int, str, Callable[[sqlite3.Connection], None] | str]] = [
    (1, "Add index on invoices(status, invoice_date)", """
        CREATE INDEX IF NOT EXISTS idx_invoices_status_date ON invoices(status, invoice_date);
    """),
    (2, "Add index on invoice_lines(invoice_id)", """
        CREATE INDEX IF NOT EXISTS idx_invoice_lines_invoice ON invoice_lines(invoice_id);
    """),
    (3, "Add index on payments(invoice_id)", """
        CREATE INDEX IF NOT EXISTS idx_payments_invoice ON payments(invoice_id);
    """),
]


def _is_lock_error(e: sqlite3.OperationalError) -> bool:
    msg = str(e).lower()
    return "locked" in msg or "busy" in msg


class DBManager:
    """
    One SQLite connection per thread for the configured path.
    Writers serialize on BEGIN IMMEDIATE, which is also what makes numbering exclusive.
    """

    _path: str = DB_PATH_DEFAULT
    _max_retries: int = 5
    _retry_backoff_s: float = 0.15
    _local = threading.local()
    _generation: int = 0
    _open: dict[threading.Thread, sqlite3.Connection] = {}

    @classmethod
    def configure(cls, path: str = DB_PATH_DEFAULT, max_retries: int = 5, retry_backoff_s: float = 0.15):
        cls.close()
        cls._path = path
        cls._max_retries = max_retries
        cls._retry_backoff_s = retry_backoff_s

    @classmethod
    def _open_connection(cls, db_path: str) -> sqlite3.Connection:
        conn = sqlite3.connect(
            db_path,
            timeout=30.0,
            isolation_level=None,      # transactions are explicit (BEGIN IMMEDIATE)
            uri=db_path.startswith("file:"),
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        if db_path != ":memory:" and "mode=memory" not in db_path:
            conn.execute("PRAGMA journal_mode = WAL;")
            conn.execute("PRAGMA synchronous = FULL;")
        conn.execute("PRAGMA temp_store = MEMORY;")
        conn.execute("PRAGMA busy_timeout = 5000;")
        return conn

    @classmethod
    def connect(cls, path: Optional[str] = None) -> sqlite3.Connection:
        """
        Connection for the calling thread. Cached per thread; a closed connection,
        or one opened before the last configure()/close(), is transparently reopened.
        Opening a connection closes those left behind by threads that have exited.
        """
        db_path = path or cls._path
        conn = getattr(cls._local, "conn", None)
        if conn is not None and getattr(cls._local, "generation", None) == cls._generation:
            try:
                conn.execute("SELECT 1")
                return conn
            except sqlite3.ProgrammingError:
                pass
        conn = cls._open_connection(db_path)
        with _lock:
            cls._prune_dead_threads()
            cls._open[threading.current_thread()] = conn
            cls._local.conn = conn
            cls._local.generation = cls._generation
        return conn

    @classmethod
    def _prune_dead_threads(cls):
        # caller holds _lock
        for thread in [t for t in cls._open if not t.is_alive()]:
            conn = cls._open.pop(thread)
            try:
                conn.close()
            except sqlite3.Error:
                logger.exception("Error closing connection of finished thread %s", thread.name)

    @classmethod
    @contextmanager
    def transaction(cls):
        """
        Atomic unit of work. Commits on normal exit, rolls back on any exception.
        Raises SequenceLockTimeout when the write lock can't be obtained after retries.
        """
        conn = cls.connect()
        cur = conn.cursor()
        attempt = 0
        while True:
            try:
                cur.execute("BEGIN IMMEDIATE;")
                break
            except sqlite3.OperationalError as e:
                if _is_lock_error(e):
                    if attempt >= cls._max_retries:
                        cur.close()
                        logger.warning("Write lock not acquired after %s retries: %s", attempt, e)
                        raise SequenceLockTimeout(f"Database write lock not acquired: {e}") from e
                    time.sleep(cls._retry_backoff_s * (2 ** attempt))
                    attempt += 1
                    continue
                cur.close()
                raise
        try:
            yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cur.close()

    @classmethod
    def execute_script(cls, script: str, path: Optional[str] = None):
        conn = cls.connect(path)
        cur = conn.cursor()
        cur.executescript(script)
        conn.commit()
        cur.close()

    @classmethod
    def fetch_one(cls, sql: str, params: tuple = (), path: Optional[str] = None) -> Optional[sqlite3.Row]:
        conn = cls.connect(path)
        cur = conn.cursor()
        cur.execute(sql, params)
        row = cur.fetchone()
        cur.close()
        return row

    @classmethod
    def fetch_all(cls, sql: str, params: tuple = (), path: Optional[str] = None) -> list[sqlite3.Row]:
        conn = cls.connect(path)
        cur = conn.cursor()
        cur.execute(sql, params)
        rows = cur.fetchall()
        cur.close()
        return rows

    # --- Migrations ---

    @classmethod
    def _ensure_migrations_table(cls):
        cls.execute_script("""
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL DEFAULT (datetime('now')),
                description TEXT
            );
        """)

    @classmethod
    def _current_version(cls) -> int:
        cls._ensure_migrations_table()
        row = cls.fetch_one("SELECT MAX(version) AS v FROM schema_migrations")
        return int(row["v"]) if row and row["v"] is not None else 0

    @classmethod
    def _apply_migration(cls, version: int, description: str, mig: Callable[[sqlite3.Connection], None] | str):
        with cls.transaction() as cur:
            if isinstance(mig, str):
                for statement in filter(None, (s.strip() for s in mig.split(";"))):
                    cur.execute(statement)
            else:
                mig(cur.connection)
            cur.execute("INSERT INTO schema_migrations(version, description) VALUES (?, ?)", (version, description))
        logger.info("Applied migration %s: %s", version, description)

    @classmethod
    def migrate(cls):
        current = cls._current_version()
        for version, description, mig in sorted(MIGRATIONS, key=lambda m: m[0]):
            if version > current:
                cls._apply_migration(version, description, mig)

    # --- Initialization ---

    @classmethod
    def initialize(cls):
        cls.execute_script(SCHEMA_SQL)
        cls.migrate()

    @classmethod
    def close(cls):
        with _lock:
            for conn in cls._open.values():
                try:
                    conn.close()
                except sqlite3.Error:
                    logger.exception("Error closing connection")
            cls._open = {}
            cls._generation += 1
            cls._local = threading.local()
