"""
Unit tests for token limit threshold notifications.

Time is driven by a fake clock so cooldowns, snoozes and day rollovers are
deterministic.
"""

from datetime import datetime, timedelta

import pytest

from cctray.config.loader import InterruptionLevel, QuietHoursConfig
from cctray.core.thresholds import (
    NotificationAction,
    ThresholdKind,
    ThresholdNotifier,
    ThresholdSet,
)
from cctray.storage.models import StateKey
from cctray.storage.repository import StateRepository

LIMIT = 1_000_000
THRESHOLDS = ThresholdSet(warning=75, urgent=85, critical=95)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 10, 14, 0, 0))


@pytest.fixture
def repository(tmp_path):
    return StateRepository(str(tmp_path / "state.db"))


@pytest.fixture
def notifier(repository, clock):
    return ThresholdNotifier(repository, clock=clock)


def evaluate(notifier, percent):
    fired = notifier.maybe_notify(percent, LIMIT, int(LIMIT * percent / 100), THRESHOLDS)
    return [n.kind for n in fired]


class TestThresholdEvaluation:
    """Test which kinds fire for a given usage."""

    def test_below_all_thresholds(self, notifier):
        assert evaluate(notifier, 50) == []

    def test_warning_only_at_80_percent(self, notifier):
        assert evaluate(notifier, 80) == [ThresholdKind.WARNING]

    def test_small_move_does_not_refire(self, notifier, clock):
        evaluate(notifier, 80)
        clock.advance(minutes=1)
        assert evaluate(notifier, 80.5) == []

    def test_cooldown_blocks_refire(self, notifier, clock):
        evaluate(notifier, 80)
        clock.advance(minutes=29)
        assert evaluate(notifier, 83) == []

    def test_refires_after_cooldown(self, notifier, clock):
        evaluate(notifier, 80)
        clock.advance(minutes=30)
        assert evaluate(notifier, 82) == [ThresholdKind.WARNING]

    def test_all_levels_at_100_percent(self, notifier):
        assert evaluate(notifier, 100) == [
            ThresholdKind.WARNING,
            ThresholdKind.URGENT,
            ThresholdKind.CRITICAL,
            ThresholdKind.EXCEEDED,
        ]

    def test_zero_threshold_disables_level(self, notifier):
        fired = notifier.maybe_notify(90, LIMIT, 900_000, ThresholdSet(warning=0, urgent=85))
        assert [n.kind for n in fired] == [ThresholdKind.URGENT]

    def test_daily_cap(self, repository, clock):
        notifier = ThresholdNotifier(repository, max_per_day=2, clock=clock)
        percent = 76.0
        fired = []
        for _ in range(4):
            fired.extend(evaluate(notifier, percent))
            clock.advance(minutes=31)
            percent += 2
        assert fired == [ThresholdKind.WARNING, ThresholdKind.WARNING]

    def test_notification_content(self, notifier):
        fired = notifier.maybe_notify(80, LIMIT, 800_000, THRESHOLDS)
        notification = fired[0]

        assert notification.title == "Token Usage Warning"
        assert "80.0%" in notification.body
        assert "200,000 tokens remaining" in notification.body
        assert notification.payload["kind"] == "warning"
        assert notification.interruption_level == InterruptionLevel.ACTIVE

    def test_exceeded_body(self, notifier):
        fired = notifier.maybe_notify(100, LIMIT, 1_100_000, ThresholdSet(0, 0, 0))
        assert fired[0].kind == ThresholdKind.EXCEEDED
        assert "Consider upgrading your plan" in fired[0].body

    def test_interruption_level_uses_most_severe(self, repository, clock):
        notifier = ThresholdNotifier(
            repository,
            priorities={
                "warning": InterruptionLevel.PASSIVE,
                "urgent": InterruptionLevel.ACTIVE,
                "critical": InterruptionLevel.TIME_SENSITIVE,
            },
            clock=clock,
        )
        assert notifier.interruption_level(96, THRESHOLDS) == InterruptionLevel.TIME_SENSITIVE
        assert notifier.interruption_level(86, THRESHOLDS) == InterruptionLevel.ACTIVE
        assert notifier.interruption_level(76, THRESHOLDS) == InterruptionLevel.PASSIVE
        assert notifier.interruption_level(10, THRESHOLDS) == InterruptionLevel.ACTIVE

    def test_tracking_persisted(self, notifier, repository):
        evaluate(notifier, 80)
        assert repository.get(StateKey.TOKEN_NOTIFICATION_COUNTS) == {"warning": 1}
        assert repository.get(StateKey.TOKEN_NOTIFICATION_PERCENTS) == {"warning": 80}


class TestSnooze:
    """Test snoozing a kind."""

    def test_snooze_suppresses_kind(self, notifier, clock):
        notifier.snooze(ThresholdKind.WARNING, 15)

        for _ in range(3):
            assert ThresholdKind.WARNING not in evaluate(notifier, 100)
            clock.advance(minutes=5)

    def test_snooze_then_cooldown(self, notifier, clock):
        """Firing resumes once the snooze and the cooldown after it have passed."""
        notifier.snooze(ThresholdKind.WARNING, 15)

        clock.advance(minutes=16)
        assert evaluate(notifier, 80) == []

        clock.advance(minutes=30)
        assert evaluate(notifier, 80) == [ThresholdKind.WARNING]

    def test_expired_snooze_is_purged(self, notifier, repository, clock):
        notifier.snooze(ThresholdKind.URGENT, 15)
        clock.advance(minutes=15)

        assert notifier.is_snoozed(ThresholdKind.URGENT) is False
        assert repository.load_snoozes() == {}

    def test_snooze_defaults_to_configured_minutes(self, repository, clock):
        notifier = ThresholdNotifier(repository, snooze_minutes=20, clock=clock)
        until = notifier.snooze(ThresholdKind.WARNING)
        assert until == clock.now + timedelta(minutes=20)

    def test_snooze_visible_to_other_instances(self, repository, clock):
        ThresholdNotifier(repository, clock=clock).snooze(ThresholdKind.WARNING, 15)
        other = ThresholdNotifier(repository, clock=clock)
        assert evaluate(other, 80) == []


class TestDisableToday:
    """Test disabling notifications until midnight."""

    def test_disable_suppresses_everything(self, notifier):
        notifier.disable_today()
        assert evaluate(notifier, 100) == []

    def test_new_day_reenables_with_fresh_counters(self, repository, clock):
        notifier = ThresholdNotifier(repository, max_per_day=1, clock=clock)
        assert evaluate(notifier, 80) == [ThresholdKind.WARNING]
        notifier.disable_today()

        clock.advance(hours=9)
        assert clock.now.day == 10
        assert evaluate(notifier, 100) == []

        clock.advance(hours=2)
        assert evaluate(notifier, 80) == [ThresholdKind.WARNING]
        assert repository.load_disabled_today() is None

    def test_new_day_resets_tracking(self, notifier, repository, clock):
        evaluate(notifier, 80)
        clock.advance(days=1)
        notifier.load()

        assert notifier.tracking == {}
        assert repository.get(StateKey.TOKEN_NOTIFICATION_DATE) == "2025-03-11"


class TestQuietHours:
    """Test the quiet hours gate."""

    def test_quiet_hours_suppress(self, repository, clock):
        quiet = QuietHoursConfig(enabled=True, start_hour=13, end_hour=15)
        notifier = ThresholdNotifier(repository, quiet_hours=quiet, clock=clock)
        assert evaluate(notifier, 100) == []

        clock.advance(hours=1)
        assert evaluate(notifier, 100) != []


class TestActions:
    """Test user actions on delivered notifications."""

    def test_reset_counters(self, repository, clock):
        notifier = ThresholdNotifier(repository, max_per_day=1, clock=clock)
        evaluate(notifier, 80)
        notifier.reset_counters()

        assert evaluate(notifier, 80) == [ThresholdKind.WARNING]

    def test_snooze_action(self, notifier):
        notifier.handle_action(NotificationAction.SNOOZE, ThresholdKind.URGENT)
        assert notifier.is_snoozed(ThresholdKind.URGENT)

    def test_exceeded_cannot_be_snoozed(self, notifier):
        with pytest.raises(ValueError):
            notifier.handle_action(NotificationAction.SNOOZE, ThresholdKind.EXCEEDED)

    def test_disable_action(self, notifier):
        notifier.handle_action(NotificationAction.DISABLE_TODAY, ThresholdKind.WARNING)
        assert notifier.is_disabled_today()

    def test_view_usage_is_noop(self, notifier, repository):
        notifier.handle_action(NotificationAction.VIEW_USAGE, ThresholdKind.WARNING)
        assert repository.load_snoozes() == {}

    def test_snooze_action_minutes(self, notifier, clock):
        until = notifier.handle_action(NotificationAction.SNOOZE, ThresholdKind.WARNING, minutes=20)

        assert until == clock.now + timedelta(minutes=20)

    def test_snooze_action_requires_kind(self, notifier):
        with pytest.raises(ValueError):
            notifier.handle_action(NotificationAction.SNOOZE)

    def test_disable_action_without_kind(self, notifier):
        assert notifier.handle_action(NotificationAction.DISABLE_TODAY) is None
        assert notifier.is_disabled_today()

    def test_available_actions(self):
        assert ThresholdKind.EXCEEDED.actions == (
            NotificationAction.VIEW_USAGE, NotificationAction.DISABLE_TODAY,
        )
        for kind in (ThresholdKind.WARNING, ThresholdKind.URGENT, ThresholdKind.CRITICAL):
            assert kind.actions == (
                NotificationAction.VIEW_USAGE, NotificationAction.SNOOZE, NotificationAction.DISABLE_TODAY,
            )
