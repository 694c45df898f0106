"""
Database connection management.

Provides read-only SQLite connections to the origin tool's store.
"""

import sqlite3
from pathlib import Path


def get_connection(db_path: str) -> sqlite3.Connection:
    """Open a SQLite database in read-only mode.

    The file is never created or modified; opening a missing path raises
    sqlite3.OperationalError.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Read-only SQLite connection with rows addressable by column name
    """
    path = Path(db_path).resolve()
    conn = sqlite3.connect(f"{path.as_uri()}?mode=ro", uri=True)
    conn.row_factory = sqlite3.Row
    return conn
