"""
Database connection management.

Provides the SQLite connection backing the Sparks ledger.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "knowledge_gate.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite connection for the ledger.

    The parent directory is created on demand so a configured ledger path
    under a fresh data directory works on first use.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
