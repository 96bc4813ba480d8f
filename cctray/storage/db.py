"""
Database connection management.

Provides the SQLite connection backing persisted monitor state.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = str(Path.home() / ".cctray" / "state.db")


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite connection, creating the parent directory.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection
    """
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return sqlite3.connect(str(path))
