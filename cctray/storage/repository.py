"""
Repository pattern for persisted state.

Stores small JSON values in a key/value table so monitor and notification
state survives restarts and is shared with one-shot CLI commands.
"""

import json
from datetime import datetime
from typing import Any, Dict, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import NotificationTrackingEntry, SessionState, StateKey


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the app_state table if it doesn't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS app_state (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()


class StateRepository:
    """Key/value access to persisted state.

    Values are JSON encoded. Timestamps are stored as ISO-8601 strings.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository and make sure the schema exists.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        initialize_schema(db_path)

    def get(self, key: str, default: Any = None) -> Any:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT value FROM app_state WHERE key = ?", (key,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return default
        return json.loads(row[0])

    def set(self, key: str, value: Any) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO app_state (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                               updated_at = excluded.updated_at
            """, (key, json.dumps(value), datetime.now().isoformat()))
            conn.commit()
        finally:
            conn.close()

    def set_many(self, values: Dict[str, Any]) -> None:
        """Write several keys in a single transaction."""
        if not values:
            return
        now = datetime.now().isoformat()
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN TRANSACTION")
            for key, value in values.items():
                conn.execute("""
                    INSERT INTO app_state (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                                   updated_at = excluded.updated_at
                """, (key, json.dumps(value), now))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def delete(self, *keys: str) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.executemany("DELETE FROM app_state WHERE key = ?", [(k,) for k in keys])
            conn.commit()
        finally:
            conn.close()

    # Session tracking

    def load_session_state(self) -> Optional[SessionState]:
        date = self.get(StateKey.LAST_SESSION_DATE)
        if not date:
            return None
        return SessionState(
            date=date,
            sessions_today=int(self.get(StateKey.SESSIONS_TODAY, 0)),
            last_active_block_id=self.get(StateKey.LAST_ACTIVE_BLOCK_ID) or None,
        )

    def save_session_state(self, state: SessionState) -> None:
        self.set_many({
            StateKey.LAST_SESSION_DATE: state.date,
            StateKey.SESSIONS_TODAY: state.sessions_today,
            StateKey.LAST_ACTIVE_BLOCK_ID: state.last_active_block_id,
        })

    # Token limit notification tracking

    def load_tracking(self) -> Dict[str, NotificationTrackingEntry]:
        """Load per-kind tracking entries, keyed by threshold kind value."""
        counts = self.get(StateKey.TOKEN_NOTIFICATION_COUNTS, {})
        percents = self.get(StateKey.TOKEN_NOTIFICATION_PERCENTS, {})
        timestamps = self.get(StateKey.TOKEN_NOTIFICATION_TIMESTAMPS, {})

        tracking = {}
        for kind in set(counts) | set(percents) | set(timestamps):
            fired_at = timestamps.get(kind)
            tracking[kind] = NotificationTrackingEntry(
                last_fired_at=datetime.fromisoformat(fired_at) if fired_at else None,
                last_fired_percent=float(percents.get(kind, 0.0)),
                count_fired_today=int(counts.get(kind, 0)),
            )
        return tracking

    def save_tracking(self, date: str, tracking: Dict[str, NotificationTrackingEntry]) -> None:
        self.set_many({
            StateKey.TOKEN_NOTIFICATION_DATE: date,
            StateKey.TOKEN_NOTIFICATION_COUNTS: {
                kind: entry.count_fired_today for kind, entry in tracking.items()
            },
            StateKey.TOKEN_NOTIFICATION_PERCENTS: {
                kind: entry.last_fired_percent for kind, entry in tracking.items()
            },
            StateKey.TOKEN_NOTIFICATION_TIMESTAMPS: {
                kind: entry.last_fired_at.isoformat()
                for kind, entry in tracking.items()
                if entry.last_fired_at is not None
            },
        })

    def load_snoozes(self) -> Dict[str, datetime]:
        raw = self.get(StateKey.SNOOZED_NOTIFICATIONS, {})
        return {kind: datetime.fromisoformat(until) for kind, until in raw.items()}

    def save_snoozes(self, snoozes: Dict[str, datetime]) -> None:
        self.set(
            StateKey.SNOOZED_NOTIFICATIONS,
            {kind: until.isoformat() for kind, until in snoozes.items()},
        )

    def load_disabled_today(self) -> Optional[datetime]:
        raw = self.get(StateKey.DISABLED_TODAY_TIMESTAMP)
        return datetime.fromisoformat(raw) if raw else None

    def save_disabled_today(self, timestamp: Optional[datetime]) -> None:
        if timestamp is None:
            self.delete(StateKey.DISABLED_TODAY_TIMESTAMP)
        else:
            self.set(StateKey.DISABLED_TODAY_TIMESTAMP, timestamp.isoformat())
