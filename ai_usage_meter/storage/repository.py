"""
Repository pattern for the origin tool's SQLite store.

Handles read-only queries against the session and message tables.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from .db import get_connection
from .models import SessionMetadata, UNKNOWN


@dataclass(frozen=True)
class MessageRow:
    """Raw message row: owning session and its JSON payload."""
    message_id: str
    session_id: str
    data: str


class UsageRepository:
    """Read-only access to the `session` and `message` tables.

    Every method opens its own connection and closes it before returning,
    so a repository can be held without keeping the database locked.
    """

    def __init__(self, db_path: str):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path

    def get_sessions(self) -> Dict[str, SessionMetadata]:
        """Load every session row keyed by session id.

        Blank titles fall back to the session id; blank project ids and
        directories fall back to "unknown".

        Returns:
            Mapping of session id to SessionMetadata
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "SELECT id, parent_id, title, project_id, directory FROM session"
            )
            sessions: Dict[str, SessionMetadata] = {}
            for row in cursor.fetchall():
                session_id = row["id"]
                sessions[session_id] = SessionMetadata(
                    session_id=session_id,
                    parent_id=row["parent_id"] or None,
                    title=_or_default(row["title"], session_id),
                    project_id=_or_default(row["project_id"], UNKNOWN),
                    directory=_or_default(row["directory"], UNKNOWN),
                )
            return sessions
        finally:
            conn.close()

    def get_messages(self) -> List[MessageRow]:
        """Load raw message payloads in storage order.

        Payload decoding is left to the caller so a single malformed row
        can be skipped without losing the rest.
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("SELECT id, session_id, data FROM message ORDER BY rowid")
            return [
                MessageRow(
                    message_id=str(row["id"]),
                    session_id=row["session_id"],
                    data=row["data"],
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()


def _or_default(value: Optional[str], default: str) -> str:
    if value is None or value == "":
        return default
    return value

