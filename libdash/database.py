import logging
import os
import sqlite3

logger = logging.getLogger(__name__)


def get_db_connection(db_file: str) -> sqlite3.Connection:
    """Open a connection to the SQLite file backing the key/value store."""
    directory = os.path.dirname(os.path.abspath(db_file))
    if directory and not os.path.isdir(directory):
        os.makedirs(directory, exist_ok=True)
    conn = sqlite3.connect(db_file)
    conn.row_factory = sqlite3.Row
    # WAL gives readers a consistent snapshot while the API writes
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


def create_tables(db_file: str) -> None:
    """Create the key/value table if it does not exist yet."""
    conn = get_db_connection(db_file)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_kv_store_updated_at ON kv_store(updated_at)")
        conn.commit()
    finally:
        conn.close()


def initialize_database(db_file: str) -> None:
    """Initialize the database file, creating tables when needed."""
    create_tables(db_file)
    logger.debug("Database ready at %s", db_file)
