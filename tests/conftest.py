"""
Shared fixtures for the test suite.
"""

import json
import sqlite3

import pytest


def create_store(db_path, sessions=(), messages=()):
    """Write a minimal origin-tool database."""
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("""
            CREATE TABLE session (
                id TEXT PRIMARY KEY,
                parent_id TEXT,
                title TEXT,
                project_id TEXT,
                directory TEXT
            )
        """)
        conn.execute("""
            CREATE TABLE message (
                id TEXT PRIMARY KEY,
                session_id TEXT,
                data TEXT
            )
        """)
        conn.executemany(
            "INSERT INTO session (id, parent_id, title, project_id, directory) VALUES (?, ?, ?, ?, ?)",
            sessions,
        )
        conn.executemany(
            "INSERT INTO message (id, session_id, data) VALUES (?, ?, ?)",
            [
                (message_id, session_id, data if isinstance(data, str) else json.dumps(data))
                for message_id, session_id, data in messages
            ],
        )
        conn.commit()
    finally:
        conn.close()


@pytest.fixture
def make_store():
    """Factory writing an origin-tool SQLite store."""
    return create_store
