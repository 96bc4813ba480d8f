"""
Data models for storage layer.

Defines persisted state records and the keys they are stored under.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


class StateKey:
    """Keys of the app_state table."""
    LAST_SESSION_DATE = "last_session_date"
    SESSIONS_TODAY = "sessions_today"
    LAST_ACTIVE_BLOCK_ID = "last_active_block_id"
    TOKEN_NOTIFICATION_DATE = "token_notification_date"
    TOKEN_NOTIFICATION_COUNTS = "token_notification_counts"
    TOKEN_NOTIFICATION_PERCENTS = "token_notification_percents"
    TOKEN_NOTIFICATION_TIMESTAMPS = "token_notification_timestamps"
    SNOOZED_NOTIFICATIONS = "snoozed_notifications"
    DISABLED_TODAY_TIMESTAMP = "disabled_today_timestamp"


@dataclass(frozen=True)
class SessionState:
    """Sessions started on a given local date."""
    date: str
    sessions_today: int = 0
    last_active_block_id: Optional[str] = None


@dataclass
class NotificationTrackingEntry:
    """Firing history of one threshold kind for the current day."""
    last_fired_at: Optional[datetime] = None
    last_fired_percent: float = 0.0
    count_fired_today: int = 0
