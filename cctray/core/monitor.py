"""
Usage polling loop.

A one-second countdown triggers fetches; failures are classified and retried
with category-specific backoff. Each successful fetch updates session
tracking, threshold notifications and the session-end reminder.

State machine: Idle -> Ticking -> Fetching -> (Success -> Idle | Failure -> Backoff) -> Idle
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, List, Optional

from cctray.config.loader import Preferences
from cctray.storage.models import SessionState
from cctray.storage.repository import StateRepository

from .backoff import (
    TRANSITION_WINDOW_SECONDS,
    ErrorCategory,
    PollState,
    categorize_error,
)
from .executor import CommandExecutor
from .notifications import NotificationCenter
from .thresholds import ThresholdNotifier, ThresholdSet, local_date_string
from .usage import Block, DisplayMode, format_detailed_info, format_title

_LOG = logging.getLogger(__name__)

MAX_ERROR_HISTORY = 50


@dataclass(frozen=True)
class ErrorRecord:
    timestamp: datetime
    category: ErrorCategory
    message: str


class UsageMonitor:
    """Polls ccusage and owns all monitor state.

    Only one fetch runs at a time. Stopping cancels timers and pending
    notifications but lets an in-flight fetch finish.
    """

    def __init__(
        self,
        preferences: Preferences,
        executor: Optional[CommandExecutor] = None,
        repository: Optional[StateRepository] = None,
        notifier: Optional[ThresholdNotifier] = None,
        notification_center: Optional[NotificationCenter] = None,
        clock: Callable[[], datetime] = datetime.now,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.preferences = preferences
        self.executor = executor or CommandExecutor()
        self.repository = repository or StateRepository(preferences.storage.db_path)

        token_prefs = preferences.notifications.token_limit
        self.notifier = notifier or ThresholdNotifier(
            self.repository,
            max_per_day=token_prefs.max_per_day,
            snooze_minutes=token_prefs.snooze_minutes,
            quiet_hours=token_prefs.quiet_hours,
            priorities=token_prefs.priorities,
            clock=clock,
        )
        self.notifications = notification_center or NotificationCenter()
        self.clock = clock
        self.monotonic = monotonic

        self.state = PollState(seconds_until_next_refresh=preferences.polling.update_interval)
        self.current_block: Optional[Block] = None
        self.display_mode: DisplayMode = preferences.display.enabled_modes[0]
        self.is_loading = False
        self.is_active = False
        self.error: Optional[str] = None
        self.sessions_today = 0
        self.error_history: Deque[ErrorRecord] = deque(maxlen=MAX_ERROR_HISTORY)

        self._display_index = 0
        self._session_date: Optional[str] = None
        self._last_active_block_id: Optional[str] = None
        self._was_session_active = False
        self._last_transition_at: Optional[float] = None
        self._diagnostic_mode = False

        self._timer_tasks: List[asyncio.Task] = []
        self._fetch_task: Optional[asyncio.Task] = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None

    # Diagnostics

    @property
    def diagnostic_mode(self) -> bool:
        return self._diagnostic_mode

    @diagnostic_mode.setter
    def diagnostic_mode(self, enabled: bool) -> None:
        self._diagnostic_mode = enabled
        self.executor.diagnostic_mode = enabled

    def _log(self, message: str, *args) -> None:
        _LOG.log(logging.INFO if self._diagnostic_mode else logging.DEBUG, message, *args)

    # Lifecycle

    async def start(self) -> None:
        """Start the countdown and rotation timers and fetch immediately."""
        self.stop()
        self._load_session_state()
        self.reset_countdown()

        self._timer_tasks = [
            asyncio.create_task(self._countdown_loop()),
            asyncio.create_task(self._rotation_loop()),
        ]
        self.is_active = True
        self._fetch_task = asyncio.get_running_loop().create_task(self.update_usage_data())
        await self._fetch_task

    def stop(self) -> None:
        """Cancel timers and pending notifications, reset error state."""
        for task in self._timer_tasks:
            task.cancel()
        self._timer_tasks = []
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

        self.is_active = False
        self.reset_countdown()

        self.notifications.cancel_session_end()
        self.notifications.cancel_token_limit()

        self.state.reset_errors()
        self._was_session_active = False
        self._last_transition_at = None

    async def _countdown_loop(self) -> None:
        while True:
            await asyncio.sleep(1)
            self.tick()

    async def _rotation_loop(self) -> None:
        while True:
            await asyncio.sleep(self.preferences.polling.rotation_interval)
            self.rotate_display()

    def reset_countdown(self) -> None:
        self.state.seconds_until_next_refresh = self.preferences.polling.update_interval

    def tick(self) -> bool:
        """Advance the countdown by one second.

        Returns:
            True if a fetch was started by this tick
        """
        if self.state.seconds_until_next_refresh <= 0:
            return False

        self.state.seconds_until_next_refresh -= 1
        if self.state.seconds_until_next_refresh > 0:
            return False

        if self.state.in_backoff:
            self._log(
                "Skipping countdown refresh due to error backoff (errors: %d)",
                self.state.consecutive_error_count,
            )
            self.reset_countdown()
            return False

        return self._spawn_fetch()

    def _spawn_fetch(self) -> bool:
        if self._fetch_task is not None and not self._fetch_task.done():
            self._log("Fetch already in flight, skipping")
            return False
        self._fetch_task = asyncio.get_running_loop().create_task(self.update_usage_data())
        return True

    def rotate_display(self) -> DisplayMode:
        """Show the next enabled metric, wrapping around."""
        modes = self.preferences.display.enabled_modes
        self._display_index = (self._display_index + 1) % len(modes)
        self.display_mode = modes[self._display_index]
        return self.display_mode

    # Fetching

    async def update_usage_data(self) -> None:
        """Fetch usage once and apply the result or the failure."""
        ccusage = self.preferences.ccusage
        self.is_loading = True
        self.error = None
        retry_scheduled = False
        try:
            response = await self.executor.get_usage_data(
                ccusage.command_path,
                script_path=ccusage.script_path,
                token_limit=self.preferences.token_limit.effective_limit,
                timeout=ccusage.timeout,
            )
            new_block = response.active_block

            self._validate_session_transition(new_block)
            self._update_session_tracking(new_block)
            self.current_block = new_block

            self._monitor_token_limit(new_block)
            self._update_session_end_notification(new_block)

            self.state.reset_errors()
            self.error = None
        except Exception as e:
            delay = self._handle_failure(e)
            if delay is not None:
                retry_scheduled = self._schedule_retry(delay)
        finally:
            self.is_loading = False
            # A scheduled retry resets the countdown when it completes
            if not retry_scheduled:
                self.reset_countdown()

    def _handle_failure(self, error: Exception) -> Optional[float]:
        category = categorize_error(error)
        previous = self.state.last_error_category
        if previous is not None and previous != category:
            self._log(
                "Error category changed from %s to %s, resetting consecutive errors",
                previous.value, category.value,
            )

        in_window = self.in_session_transition_window()
        delay = self.state.record_failure(category, in_transition_window=in_window)
        self.error = str(error)
        self._record_error(category, self.error)

        _LOG.warning("Error fetching usage data (%s): %s", category.value, error)
        if in_window:
            self._log("Error during session transition window, reducing backoff")
        if delay is not None:
            _LOG.info(
                "Consecutive errors: %d, category: %s, next backoff delay: %.1fs",
                self.state.consecutive_error_count, category.value, delay,
            )
        return delay

    def _schedule_retry(self, delay: float) -> bool:
        if not self.is_active:
            return False
        if self._retry_handle is not None:
            self._retry_handle.cancel()
        self._retry_handle = asyncio.get_running_loop().call_later(delay, self._retry)
        return True

    def _retry(self) -> None:
        self._retry_handle = None
        if self.is_active:
            self._spawn_fetch()

    def _record_error(self, category: ErrorCategory, message: str) -> None:
        self.error_history.append(ErrorRecord(self.clock(), category, message))

    # Session tracking

    def in_session_transition_window(self) -> bool:
        if self._last_transition_at is None:
            return False
        return self.monotonic() - self._last_transition_at < TRANSITION_WINDOW_SECONDS

    def _validate_session_transition(self, new_block: Optional[Block]) -> None:
        is_active_now = new_block is not None
        if is_active_now == self._was_session_active:
            return

        self._last_transition_at = self.monotonic()
        if is_active_now:
            self._log("Session transition detected: session started")
            self.executor.force_invalidate_cache()
            self.state.reset_errors()
            self.error = None
        else:
            self._log("Session transition detected: session ended")
            if self.state.consecutive_error_count > 0:
                self.state.reset_errors()
                self.error = None
        self._was_session_active = is_active_now

    def _load_session_state(self) -> None:
        today = local_date_string(self.clock())
        stored = self.repository.load_session_state()
        if stored is not None and stored.date == today:
            self.sessions_today = stored.sessions_today
            self._last_active_block_id = stored.last_active_block_id
            _LOG.info(
                "Loaded session count for today: %d (last block: %s)",
                self.sessions_today, self._last_active_block_id or "none",
            )
        else:
            self.sessions_today = 0
            self._last_active_block_id = None
        self._session_date = today

    def _save_session_state(self) -> None:
        self.repository.save_session_state(SessionState(
            date=self._session_date or local_date_string(self.clock()),
            sessions_today=self.sessions_today,
            last_active_block_id=self._last_active_block_id,
        ))

    def _update_session_tracking(self, new_block: Optional[Block]) -> None:
        if self._session_date != local_date_string(self.clock()):
            self._load_session_state()

        if new_block is not None and new_block.id != self._last_active_block_id:
            self.sessions_today += 1
            self._last_active_block_id = new_block.id
            _LOG.info("New session %s, sessions today: %d", new_block.id, self.sessions_today)
            self._save_session_state()
        elif new_block is None and self._last_active_block_id is not None:
            self._last_active_block_id = None
            _LOG.info("Session ended")
            self._save_session_state()

    # Notifications

    def _monitor_token_limit(self, block: Optional[Block]) -> None:
        prefs = self.preferences.notifications.token_limit
        if not prefs.enabled or block is None or block.token_limit_status is None:
            return

        status = block.token_limit_status
        fired = self.notifier.maybe_notify(
            status.percent_used,
            status.limit,
            status.projected_usage,
            ThresholdSet(warning=prefs.warning, urgent=prefs.urgent, critical=prefs.critical),
        )
        for notification in fired:
            self.notifications.deliver_token_limit(notification)

    def _update_session_end_notification(self, block: Optional[Block]) -> None:
        prefs = self.preferences.notifications.session_end
        if not prefs.enabled:
            return
        if block is not None:
            self.notifications.schedule_session_end(block, prefs.minutes, prefs.priority)
        else:
            self.notifications.cancel_session_end()

    # Presentation

    def current_title(self) -> str:
        block = self.current_block
        if block is None:
            if self.error is not None:
                return " ❌"
            if self.is_loading:
                return " ..."
            return " 💤"

        if self.display_mode == DisplayMode.SESSIONS_TODAY:
            return f" S: {self.sessions_today}"

        display = self.preferences.display
        low, high = display.burn_rate_thresholds
        return format_title(
            block,
            self.display_mode,
            plan=display.plan,
            low_threshold=low,
            high_threshold=high,
            decimal_places=display.cost_decimal_places,
        )

    def detailed_info(self) -> List[str]:
        block = self.current_block
        if block is None:
            if self.error is not None:
                return [f"❌ Error: {self.error}"]
            if self.is_loading:
                return ["⏳ Loading..."]
            return ["💤 No active session"]

        display = self.preferences.display
        low, high = display.burn_rate_thresholds
        info = format_detailed_info(block, display.plan, low, high)
        info.append(f"📅 Sessions Started Today: {self.sessions_today}")
        return info

    def diagnostic_summary(self) -> str:
        recent = list(self.error_history)[-10:]
        errors = "\n".join(
            f"{r.timestamp.isoformat()}: {r.category.value} - {r.message}" for r in recent
        )
        last_category = self.state.last_error_category
        return "\n".join([
            "=== CCTray Diagnostic Summary ===",
            f"Diagnostic Mode: {'ON' if self._diagnostic_mode else 'OFF'}",
            f"Consecutive Errors: {self.state.consecutive_error_count}",
            f"Last Error Category: {last_category.value if last_category else 'none'}",
            f"Backoff Delay: {self.state.current_backoff_delay}s",
            f"Session Active: {self._was_session_active}",
            "",
            "Recent Errors:",
            errors or "No recent errors",
        ])
