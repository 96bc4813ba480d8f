"""
Tests for the CLI interface.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import yaml
from typer.testing import CliRunner

from cctray.cli.main import EXIT_CODE_FAIL, EXIT_CODE_OK, app
from cctray.core.errors import CommandNotFound
from cctray.core.usage import Block, UsageResponse
from cctray.storage.repository import StateRepository

runner = CliRunner()


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "state.db")


@pytest.fixture
def config_path(tmp_path, db_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({
        "ccusage": {"command_path": str(tmp_path / "missing" / "node")},
        "storage": {"db_path": db_path},
    }))
    return str(path)


@pytest.fixture
def mock_executor():
    """Mock the CommandExecutor used by one-shot commands."""
    with patch('cctray.cli.main.CommandExecutor') as mock_cls:
        executor = MagicMock()
        executor.get_usage_data = AsyncMock()
        mock_cls.return_value = executor
        yield executor


def active_response() -> UsageResponse:
    return UsageResponse(blocks=[Block.from_dict({
        "id": "block-1",
        "startTime": "2025-01-01T10:00:00Z",
        "endTime": "2025-01-01T15:00:00Z",
        "actualEndTime": "2025-01-01T11:00:00Z",
        "isActive": True,
        "costUSD": 4.2,
        "totalTokens": 12000,
    })])


class TestStatus:
    """Test the one-shot status command."""

    def test_status_prints_active_block(self, config_path, mock_executor):
        mock_executor.get_usage_data.return_value = active_response()

        result = runner.invoke(app, ["--config", config_path, "status"])

        assert result.exit_code == EXIT_CODE_OK
        assert "Current Cost: $4.20" in result.output
        assert "Pro Plan" in result.output

    def test_status_without_active_session(self, config_path, mock_executor):
        mock_executor.get_usage_data.return_value = UsageResponse(blocks=[])

        result = runner.invoke(app, ["--config", config_path, "status"])

        assert result.exit_code == EXIT_CODE_OK
        assert "No active session" in result.output

    def test_status_fetch_failure(self, config_path, mock_executor):
        mock_executor.get_usage_data.side_effect = CommandNotFound("node")

        result = runner.invoke(app, ["--config", config_path, "status"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error fetching usage data" in result.output

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.dump({"polling": {"update_interval": 0}}))

        result = runner.invoke(app, ["--config", str(path), "status"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Configuration error" in result.output

    def test_missing_config(self, tmp_path):
        result = runner.invoke(app, ["--config", str(tmp_path / "nope.yaml"), "status"])
        assert result.exit_code == EXIT_CODE_FAIL


class TestNotificationCommands:
    """Test notification actions against persisted state."""

    def test_snooze(self, config_path, db_path):
        result = runner.invoke(app, ["--config", config_path, "snooze", "warning", "--minutes", "20"])

        assert result.exit_code == EXIT_CODE_OK
        assert "snoozed until" in result.output
        assert "warning" in StateRepository(db_path).load_snoozes()

    def test_snooze_exceeded_rejected(self, config_path, db_path):
        result = runner.invoke(app, ["--config", config_path, "snooze", "exceeded"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "not available for exceeded" in result.output
        assert StateRepository(db_path).load_snoozes() == {}

    def test_snooze_unknown_kind(self, config_path):
        result = runner.invoke(app, ["--config", config_path, "snooze", "panic"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unknown notification kind" in result.output

    def test_disable_today(self, config_path, db_path):
        result = runner.invoke(app, ["--config", config_path, "disable-today"])

        assert result.exit_code == EXIT_CODE_OK
        assert StateRepository(db_path).load_disabled_today() is not None

    def test_reset_counters(self, config_path, db_path):
        StateRepository(db_path).set("token_notification_counts", {"warning": 3})

        result = runner.invoke(app, ["--config", config_path, "reset-counters"])

        assert result.exit_code == EXIT_CODE_OK
        assert StateRepository(db_path).get("token_notification_counts") == {}


class TestDiagnostics:
    """Test the diagnostics command."""

    def test_diagnostics_with_missing_command(self, config_path):
        result = runner.invoke(app, ["--config", config_path, "diagnostics"])

        assert result.exit_code == EXIT_CODE_OK
        assert "Command not found" in result.output
        assert "blocks --live --json --active" in result.output
        assert "Disabled today: no" in result.output


class TestWatch:
    """Test the watch command wiring."""

    @pytest.fixture
    def mock_monitor(self):
        with patch('cctray.cli.main.UsageMonitor') as mock_cls, \
                patch('cctray.cli.main._watch', new_callable=AsyncMock):
            monitor = MagicMock()
            monitor.diagnostic_summary.return_value = "=== CCTray Diagnostic Summary ==="
            mock_cls.return_value = monitor
            yield monitor

    def test_verbose_prints_diagnostic_summary(self, config_path, mock_monitor):
        result = runner.invoke(app, ["--config", config_path, "--verbose", "watch"])

        assert result.exit_code == EXIT_CODE_OK
        assert mock_monitor.diagnostic_mode is True
        assert "CCTray Diagnostic Summary" in result.output

    def test_quiet_watch_skips_summary(self, config_path, mock_monitor):
        result = runner.invoke(app, ["--config", config_path, "watch"])

        assert result.exit_code == EXIT_CODE_OK
        mock_monitor.diagnostic_summary.assert_not_called()
