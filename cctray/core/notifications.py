"""
Desktop notification delivery.

Notifications are shown through the platform's command line notifier:
osascript on macOS, notify-send on Linux. Delivery failures are logged and
never propagate into the poll loop.
"""

import asyncio
import logging
import platform
import subprocess
from typing import Dict, Optional, Tuple

from cctray.config.loader import InterruptionLevel

from .thresholds import TokenLimitNotification
from .usage import Block

_LOG = logging.getLogger(__name__)

SESSION_END_PREFIX = "cctray.session.end."
TOKEN_LIMIT_PREFIX = "cctray.token.limit."

# Seconds of slack around the refresh interval when scheduling session end
SESSION_END_BUFFER_SECONDS = 10.0


class NotificationBackend:
    """Shows a notification. Returns True if it was delivered."""

    def deliver(self, title: str, body: str, level: InterruptionLevel) -> bool:
        raise NotImplementedError


class MacOSBackend(NotificationBackend):
    """Notification Center via osascript."""

    def deliver(self, title: str, body: str, level: InterruptionLevel) -> bool:
        # Escape quotes for AppleScript
        title_escaped = title.replace('"', '\\"')
        body_escaped = body.replace('"', '\\"')
        script = f'display notification "{body_escaped}" with title "{title_escaped}"'
        if level in (InterruptionLevel.TIME_SENSITIVE, InterruptionLevel.CRITICAL):
            script += ' sound name "default"'
        try:
            subprocess.run(["osascript", "-e", script], check=True, capture_output=True, timeout=10)
            return True
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError) as e:
            _LOG.warning("osascript notification failed: %s", e)
            return False


class LinuxBackend(NotificationBackend):
    """Desktop notifications via notify-send."""

    URGENCY = {
        InterruptionLevel.PASSIVE: "low",
        InterruptionLevel.ACTIVE: "normal",
        InterruptionLevel.TIME_SENSITIVE: "critical",
        InterruptionLevel.CRITICAL: "critical",
    }

    def deliver(self, title: str, body: str, level: InterruptionLevel) -> bool:
        try:
            subprocess.run(
                ["notify-send", "-u", self.URGENCY[level], "-a", "cctray", title, body],
                check=True,
                capture_output=True,
                timeout=10,
            )
            return True
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError) as e:
            _LOG.warning("notify-send notification failed: %s", e)
            return False


class LogBackend(NotificationBackend):
    """Fallback that only logs."""

    def deliver(self, title: str, body: str, level: InterruptionLevel) -> bool:
        _LOG.warning("[%s] %s: %s", level.value, title, body)
        return True


def default_backend() -> NotificationBackend:
    system = platform.system()
    if system == "Darwin":
        return MacOSBackend()
    if system == "Linux":
        return LinuxBackend()
    return LogBackend()


class NotificationCenter:
    """Delivers and schedules notifications, tracking what is pending."""

    def __init__(self, backend: Optional[NotificationBackend] = None):
        self.backend = backend or default_backend()
        self._pending: Dict[str, asyncio.TimerHandle] = {}
        self._scheduled_session_ids: set = set()

    @property
    def pending_identifiers(self) -> Tuple[str, ...]:
        return tuple(self._pending)

    def _deliver(self, identifier: str, title: str, body: str, level: InterruptionLevel) -> bool:
        self._pending.pop(identifier, None)
        delivered = self.backend.deliver(title, body, level)
        if delivered:
            _LOG.info("Delivered notification %s", identifier)
        return delivered

    def deliver_token_limit(self, notification: TokenLimitNotification) -> bool:
        identifier = f"{TOKEN_LIMIT_PREFIX}{notification.kind.value}"
        return self._deliver(
            identifier, notification.title, notification.body, notification.interruption_level
        )

    def schedule_session_end(
        self,
        block: Block,
        minutes: int,
        level: InterruptionLevel = InterruptionLevel.ACTIVE,
    ) -> bool:
        """Schedule a reminder ``minutes`` before the block ends.

        Only schedules when the block end is within the notification window
        and no reminder is already scheduled for this block.

        Returns:
            True if a reminder was scheduled by this call
        """
        remaining = block.remaining_seconds()
        if remaining is None:
            _LOG.debug("Could not calculate remaining time for block %s", block.id)
            return False

        window = minutes * 60
        if not SESSION_END_BUFFER_SECONDS < remaining <= window + SESSION_END_BUFFER_SECONDS:
            return False

        identifier = f"{SESSION_END_PREFIX}{block.id}"
        if identifier in self._scheduled_session_ids:
            return False

        delay = max(remaining - window, 1.0)
        loop = asyncio.get_running_loop()
        self._pending[identifier] = loop.call_later(
            delay,
            self._deliver,
            identifier,
            "Claude Code Session Ending",
            f"Your session will end in ~{minutes} minutes",
            level,
        )
        self._scheduled_session_ids.add(identifier)
        _LOG.info("Scheduled session end notification for %s in %.0f seconds", block.id, delay)
        return True

    def _cancel(self, prefix: str) -> int:
        identifiers = [i for i in self._pending if i.startswith(prefix)]
        for identifier in identifiers:
            self._pending.pop(identifier).cancel()
        return len(identifiers)

    def cancel_session_end(self) -> None:
        cancelled = self._cancel(SESSION_END_PREFIX)
        self._scheduled_session_ids.clear()
        if cancelled:
            _LOG.info("Cancelled %d session end notifications", cancelled)

    def cancel_token_limit(self) -> None:
        self._cancel(TOKEN_LIMIT_PREFIX)
