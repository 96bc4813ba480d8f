"""
Tests for notification delivery and session end scheduling.
"""

import asyncio
import subprocess
from unittest.mock import patch

import pytest

from cctray.config.loader import InterruptionLevel
from cctray.core.notifications import (
    LinuxBackend,
    LogBackend,
    MacOSBackend,
    NotificationBackend,
    NotificationCenter,
    default_backend,
)
from cctray.core.thresholds import ThresholdKind, TokenLimitNotification
from cctray.core.usage import Block


class RecordingBackend(NotificationBackend):
    def __init__(self):
        self.delivered = []

    def deliver(self, title, body, level):
        self.delivered.append((title, body, level))
        return True


def block_ending_in(seconds: int, block_id: str = "block-1") -> Block:
    """Block whose last activity is ``seconds`` before its end."""
    end_minute, end_second = divmod(60 * 60 - seconds, 60)
    return Block.from_dict({
        "id": block_id,
        "startTime": "2025-01-01T10:00:00Z",
        "endTime": "2025-01-01T11:00:00Z",
        "actualEndTime": f"2025-01-01T10:{end_minute:02d}:{end_second:02d}Z",
        "isActive": True,
    })


class TestBackends:
    """Test platform notification backends."""

    def test_linux_backend_invokes_notify_send(self):
        with patch("cctray.core.notifications.subprocess.run") as mock_run:
            assert LinuxBackend().deliver("Title", "Body", InterruptionLevel.TIME_SENSITIVE)

        args = mock_run.call_args[0][0]
        assert args[0] == "notify-send"
        assert args[1:3] == ["-u", "critical"]
        assert args[-2:] == ["Title", "Body"]

    def test_macos_backend_escapes_quotes(self):
        with patch("cctray.core.notifications.subprocess.run") as mock_run:
            assert MacOSBackend().deliver('Say "hi"', "Body", InterruptionLevel.ACTIVE)

        script = mock_run.call_args[0][0][2]
        assert 'with title "Say \\"hi\\""' in script
        assert "sound name" not in script

    def test_missing_notifier_returns_false(self):
        with patch("cctray.core.notifications.subprocess.run", side_effect=FileNotFoundError()):
            assert LinuxBackend().deliver("T", "B", InterruptionLevel.ACTIVE) is False

    def test_failed_notifier_returns_false(self):
        error = subprocess.CalledProcessError(1, ["osascript"])
        with patch("cctray.core.notifications.subprocess.run", side_effect=error):
            assert MacOSBackend().deliver("T", "B", InterruptionLevel.ACTIVE) is False

    @pytest.mark.parametrize("system,backend_cls", [
        ("Darwin", MacOSBackend),
        ("Linux", LinuxBackend),
        ("Windows", LogBackend),
    ])
    def test_default_backend(self, system, backend_cls):
        with patch("cctray.core.notifications.platform.system", return_value=system):
            assert isinstance(default_backend(), backend_cls)


class TestNotificationCenter:
    """Test delivery and session end scheduling."""

    def test_deliver_token_limit(self):
        backend = RecordingBackend()
        center = NotificationCenter(backend)
        notification = TokenLimitNotification(
            kind=ThresholdKind.WARNING,
            threshold=75,
            percent_used=80.0,
            current_usage=800,
            token_limit=1000,
            title="Token Usage Warning",
            body="body",
            interruption_level=InterruptionLevel.ACTIVE,
        )

        assert center.deliver_token_limit(notification)
        assert backend.delivered == [("Token Usage Warning", "body", InterruptionLevel.ACTIVE)]

    @pytest.mark.asyncio
    async def test_session_end_outside_window_not_scheduled(self):
        center = NotificationCenter(RecordingBackend())
        assert center.schedule_session_end(block_ending_in(30 * 60), 10) is False
        assert center.pending_identifiers == ()

    @pytest.mark.asyncio
    async def test_session_end_too_close_not_scheduled(self):
        center = NotificationCenter(RecordingBackend())
        assert center.schedule_session_end(block_ending_in(5), 10) is False

    @pytest.mark.asyncio
    async def test_session_end_scheduled_once_per_block(self):
        center = NotificationCenter(RecordingBackend())
        block = block_ending_in(5 * 60)

        assert center.schedule_session_end(block, 10) is True
        assert center.schedule_session_end(block, 10) is False
        assert center.pending_identifiers == ("cctray.session.end.block-1",)
        center.cancel_session_end()

    @pytest.mark.asyncio
    async def test_session_end_delivered(self):
        backend = RecordingBackend()
        center = NotificationCenter(backend)

        center.schedule_session_end(block_ending_in(5 * 60), 10, InterruptionLevel.TIME_SENSITIVE)
        await asyncio.sleep(1.2)

        assert backend.delivered == [(
            "Claude Code Session Ending",
            "Your session will end in ~10 minutes",
            InterruptionLevel.TIME_SENSITIVE,
        )]
        assert center.pending_identifiers == ()

    @pytest.mark.asyncio
    async def test_cancel_session_end(self):
        backend = RecordingBackend()
        center = NotificationCenter(backend)
        block = block_ending_in(5 * 60)

        center.schedule_session_end(block, 10)
        center.cancel_session_end()
        await asyncio.sleep(1.2)

        assert backend.delivered == []
        # A cancelled block can be scheduled again
        assert center.schedule_session_end(block, 10) is True
        center.cancel_session_end()
