"""
Token limit threshold notifications.

Decides when a threshold notification may fire. Gates are evaluated per
threshold kind:

1. Usage at or above the threshold
2. Daily cap for the kind not reached
3. Kind not snoozed
4. Notifications not disabled for the rest of today
5. Usage moved at least one point since the last firing
6. Cooldown since the last firing elapsed
7. Outside quiet hours

All tracking is persisted so it survives restarts and can be changed by
one-shot CLI commands while the monitor runs.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from cctray.config.loader import InterruptionLevel, QuietHoursConfig
from cctray.storage.models import NotificationTrackingEntry, StateKey
from cctray.storage.repository import StateRepository

_LOG = logging.getLogger(__name__)

PERCENT_DELTA_GUARD: float = 1.0


class ThresholdKind(Enum):
    """Token usage severity levels, in ascending order."""
    WARNING = "warning"
    URGENT = "urgent"
    CRITICAL = "critical"
    EXCEEDED = "exceeded"

    @property
    def cooldown(self) -> timedelta:
        minutes = {"warning": 30, "urgent": 15, "critical": 10, "exceeded": 5}[self.value]
        return timedelta(minutes=minutes)

    @property
    def actions(self) -> Tuple["NotificationAction", ...]:
        """Actions offered on a delivered notification of this kind."""
        if self == ThresholdKind.EXCEEDED:
            return (NotificationAction.VIEW_USAGE, NotificationAction.DISABLE_TODAY)
        return (
            NotificationAction.VIEW_USAGE, NotificationAction.SNOOZE, NotificationAction.DISABLE_TODAY,
        )

    @property
    def title(self) -> str:
        return {
            "warning": "Token Usage Warning",
            "urgent": "Token Usage Urgent",
            "critical": "Token Usage Critical",
            "exceeded": "Token Limit Exceeded",
        }[self.value]


class NotificationAction(Enum):
    """User actions available on a delivered notification."""
    VIEW_USAGE = "VIEW_USAGE"
    SNOOZE = "SNOOZE"
    DISABLE_TODAY = "DISABLE_TODAY"


@dataclass(frozen=True)
class ThresholdSet:
    """Configured percentages; 0 disables a level. Exceeded is fixed at 100."""
    warning: float = 75.0
    urgent: float = 85.0
    critical: float = 95.0

    def ordered(self) -> List[Tuple[ThresholdKind, float]]:
        return [
            (ThresholdKind.WARNING, self.warning),
            (ThresholdKind.URGENT, self.urgent),
            (ThresholdKind.CRITICAL, self.critical),
            (ThresholdKind.EXCEEDED, 100.0),
        ]


@dataclass(frozen=True)
class TokenLimitNotification:
    """A threshold notification that passed every gate."""
    kind: ThresholdKind
    threshold: float
    percent_used: float
    current_usage: int
    token_limit: int
    title: str
    body: str
    interruption_level: InterruptionLevel

    @property
    def payload(self) -> Dict[str, object]:
        return {
            "type": "token-limit",
            "kind": self.kind.value,
            "threshold": self.threshold,
            "current_usage": self.current_usage,
            "token_limit": self.token_limit,
        }


def local_date_string(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d")


def notification_body(percent_used: float, remaining_tokens: int, threshold: float) -> str:
    if threshold >= 100:
        return (
            f"You have used {percent_used:.1f}% of your token limit. "
            "Consider upgrading your plan or waiting for the limit to reset."
        )
    return (
        f"You have used {percent_used:.1f}% of your token limit "
        f"with {remaining_tokens:,} tokens remaining."
    )


class ThresholdNotifier:
    """Gatekeeper for token limit notifications.

    Persisted state is reloaded at the start of every evaluation, so snoozes
    and "disable today" set from another process take effect immediately.
    """

    def __init__(
        self,
        repository: StateRepository,
        max_per_day: int = 6,
        snooze_minutes: int = 15,
        quiet_hours: Optional[QuietHoursConfig] = None,
        priorities: Optional[Dict[str, InterruptionLevel]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.repository = repository
        self.max_per_day = max_per_day
        self.snooze_minutes = snooze_minutes
        self.quiet_hours = quiet_hours or QuietHoursConfig()
        self.priorities = priorities or {}
        self.clock = clock

        self.tracking: Dict[ThresholdKind, NotificationTrackingEntry] = {}
        self.snoozes: Dict[ThresholdKind, datetime] = {}
        self.disabled_today_at: Optional[datetime] = None
        self._tracking_date: Optional[str] = None

    # State loading

    def load(self) -> None:
        """Reload persisted state, resetting daily tracking on a new day."""
        today = local_date_string(self.clock())
        stored_date = self.repository.get(StateKey.TOKEN_NOTIFICATION_DATE)

        if stored_date == today:
            self.tracking = {
                ThresholdKind(kind): entry
                for kind, entry in self.repository.load_tracking().items()
            }
        else:
            _LOG.info("New day detected, resetting token notification tracking")
            self.tracking = {}
            self.repository.save_tracking(today, {})
        self._tracking_date = today

        self.snoozes = {
            ThresholdKind(kind): until
            for kind, until in self.repository.load_snoozes().items()
        }
        self.disabled_today_at = self.repository.load_disabled_today()

    def _save_tracking(self) -> None:
        self.repository.save_tracking(
            self._tracking_date or local_date_string(self.clock()),
            {kind.value: entry for kind, entry in self.tracking.items()},
        )

    def _save_snoozes(self) -> None:
        self.repository.save_snoozes(
            {kind.value: until for kind, until in self.snoozes.items()}
        )

    # Gates

    def is_disabled_today(self) -> bool:
        """Whether "disable today" is active; clears it after midnight."""
        if self.disabled_today_at is None:
            return False
        if local_date_string(self.disabled_today_at) == local_date_string(self.clock()):
            return True
        self.disabled_today_at = None
        self.repository.save_disabled_today(None)
        return False

    def is_snoozed(self, kind: ThresholdKind) -> bool:
        until = self.snoozes.get(kind)
        if until is None:
            return False
        if self.clock() >= until:
            # Expired snoozes are purged lazily
            del self.snoozes[kind]
            self._save_snoozes()
            return False
        return True

    def in_quiet_hours(self) -> bool:
        return self.quiet_hours.contains(self.clock().hour)

    def should_trigger(self, kind: ThresholdKind, percent: float, threshold: float) -> bool:
        """Per-kind gates: threshold, daily cap, snooze, delta guard, cooldown."""
        if threshold <= 0 or percent < threshold:
            return False

        entry = self.tracking.get(kind, NotificationTrackingEntry())
        if entry.count_fired_today >= self.max_per_day:
            return False

        if self.is_snoozed(kind):
            return False

        if abs(percent - entry.last_fired_percent) < PERCENT_DELTA_GUARD:
            return False

        if entry.last_fired_at is not None:
            if self.clock() - entry.last_fired_at < kind.cooldown:
                return False

        return True

    # Evaluation

    def interruption_level(self, percent: float, thresholds: ThresholdSet) -> InterruptionLevel:
        """Priority of the most severe configured threshold reached."""
        for name, value in (
            ("critical", thresholds.critical),
            ("urgent", thresholds.urgent),
            ("warning", thresholds.warning),
        ):
            if value > 0 and percent >= value:
                return self.priorities.get(name, InterruptionLevel.ACTIVE)
        return InterruptionLevel.ACTIVE

    def maybe_notify(
        self,
        current_percent: float,
        limit: int,
        projected_usage: int,
        thresholds: ThresholdSet,
    ) -> List[TokenLimitNotification]:
        """Evaluate all threshold kinds and record the ones that fire.

        Args:
            current_percent: Percent of the token limit used
            limit: Token limit
            projected_usage: Projected token usage for the block
            thresholds: Configured threshold percentages

        Returns:
            Notifications that fired, in ascending severity (empty if none)
        """
        self.load()

        if self.is_disabled_today():
            _LOG.debug("Token limit notifications disabled for today")
            return []
        if self.in_quiet_hours():
            _LOG.debug("Inside quiet hours, skipping token limit notifications")
            return []

        fired = []
        for kind, threshold in thresholds.ordered():
            if not self.should_trigger(kind, current_percent, threshold):
                continue

            notification = self._build_notification(
                kind, threshold, current_percent, limit, projected_usage, thresholds
            )
            self._record_firing(kind, current_percent)
            _LOG.info(
                "Token limit %s notification at %.1f%% (threshold %.0f%%)",
                kind.value, current_percent, threshold,
            )
            fired.append(notification)

        return fired

    def _build_notification(
        self,
        kind: ThresholdKind,
        threshold: float,
        current_percent: float,
        limit: int,
        projected_usage: int,
        thresholds: ThresholdSet,
    ) -> TokenLimitNotification:
        percent_used = (projected_usage / limit * 100) if limit > 0 else current_percent
        return TokenLimitNotification(
            kind=kind,
            threshold=threshold,
            percent_used=percent_used,
            current_usage=projected_usage,
            token_limit=limit,
            title=kind.title,
            body=notification_body(percent_used, limit - projected_usage, threshold),
            interruption_level=self.interruption_level(current_percent, thresholds),
        )

    def _record_firing(self, kind: ThresholdKind, percent: float) -> None:
        entry = self.tracking.setdefault(kind, NotificationTrackingEntry())
        entry.count_fired_today += 1
        entry.last_fired_percent = percent
        entry.last_fired_at = self.clock()
        self._save_tracking()

    # User actions

    def snooze(self, kind: ThresholdKind, minutes: Optional[int] = None) -> datetime:
        """Suppress a kind for ``minutes``; the cooldown restarts at snooze end."""
        self.load()
        until = self.clock() + timedelta(minutes=minutes or self.snooze_minutes)
        self.snoozes[kind] = until
        self._save_snoozes()

        entry = self.tracking.setdefault(kind, NotificationTrackingEntry())
        entry.last_fired_at = until
        self._save_tracking()

        _LOG.info("Snoozed %s notifications until %s", kind.value, until.isoformat())
        return until

    def disable_today(self) -> None:
        """Suppress every kind until local midnight."""
        self.disabled_today_at = self.clock()
        self.repository.save_disabled_today(self.disabled_today_at)
        _LOG.info("Token limit notifications disabled for today")

    def reset_counters(self) -> None:
        """Clear today's daily counts, percents and timestamps."""
        self.tracking = {}
        self._tracking_date = local_date_string(self.clock())
        self._save_tracking()

    def handle_action(
        self,
        action: NotificationAction,
        kind: Optional[ThresholdKind] = None,
        minutes: Optional[int] = None,
    ) -> Optional[datetime]:
        """Apply a user action taken on a token limit notification.

        Args:
            action: Action chosen by the user
            kind: Kind of the notification acted on; required for snooze
            minutes: Snooze duration, defaults to ``snooze_minutes``

        Returns:
            The snooze end for SNOOZE, otherwise None

        Raises:
            ValueError: If the action is not offered for the kind
        """
        if kind is not None and action not in kind.actions:
            raise ValueError(f"{action.value} is not available for {kind.value} notifications")

        if action == NotificationAction.SNOOZE:
            if kind is None:
                raise ValueError("Snooze requires a notification kind")
            return self.snooze(kind, minutes)
        if action == NotificationAction.DISABLE_TODAY:
            self.disable_today()
        return None
