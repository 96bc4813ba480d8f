"""
Configuration management and loading.

Handles user preferences stored as YAML. Every section is optional; missing
values fall back to defaults, unknown keys are rejected.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from cctray.core.plans import ClaudePlan
from cctray.core.usage import DisplayMode
from cctray.storage.db import DEFAULT_DB_PATH

DEFAULT_CONFIG_PATH = str(Path.home() / ".cctray" / "config.yaml")


class InterruptionLevel(Enum):
    """How strongly a notification may interrupt the user."""
    PASSIVE = "passive"
    ACTIVE = "active"
    TIME_SENSITIVE = "time_sensitive"
    CRITICAL = "critical"


@dataclass(frozen=True)
class CCUsageConfig:
    """How to invoke the ccusage CLI."""
    command_path: str = "node"
    script_path: Optional[str] = None
    timeout: float = 30.0

    def __post_init__(self):
        if not self.command_path:
            raise ValueError("command_path cannot be empty")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")


@dataclass(frozen=True)
class PollingConfig:
    """Refresh and display rotation intervals, in seconds."""
    update_interval: int = 5
    rotation_interval: float = 5.0

    def __post_init__(self):
        if self.update_interval < 1:
            raise ValueError("update_interval must be >= 1")
        if self.rotation_interval <= 0:
            raise ValueError("rotation_interval must be > 0")


@dataclass(frozen=True)
class DisplayConfig:
    """Which metrics rotate through the title and how they render."""
    modes: Tuple[DisplayMode, ...] = (
        DisplayMode.COST,
        DisplayMode.BURN_RATE,
        DisplayMode.REMAINING_TIME,
    )
    plan: ClaudePlan = ClaudePlan.PRO
    low_burn_rate_threshold: Optional[float] = None
    high_burn_rate_threshold: Optional[float] = None
    cost_decimal_places: int = 2

    def __post_init__(self):
        if not 0 <= self.cost_decimal_places <= 6:
            raise ValueError("cost_decimal_places must be between 0 and 6")

    @property
    def enabled_modes(self) -> Tuple[DisplayMode, ...]:
        """Enabled modes, always at least cost."""
        return self.modes or (DisplayMode.COST,)

    @property
    def burn_rate_thresholds(self) -> Tuple[float, float]:
        """(low, high) thresholds; explicit values only apply to the custom plan."""
        low, high = self.plan.default_thresholds
        if self.plan == ClaudePlan.CUSTOM:
            if self.low_burn_rate_threshold is not None:
                low = self.low_burn_rate_threshold
            if self.high_burn_rate_threshold is not None:
                high = self.high_burn_rate_threshold
        return low, high


@dataclass(frozen=True)
class TokenLimitConfig:
    """Token limit passed to ccusage via --token-limit."""
    enabled: bool = False
    value: int = 0

    def __post_init__(self):
        if self.value < 0:
            raise ValueError("token limit value cannot be negative")

    @property
    def effective_limit(self) -> Optional[int]:
        return self.value if self.enabled and self.value > 0 else None


@dataclass(frozen=True)
class QuietHoursConfig:
    """Local-time window where token limit notifications are suppressed."""
    enabled: bool = False
    start_hour: int = 22
    end_hour: int = 8

    def __post_init__(self):
        for name in ("start_hour", "end_hour"):
            value = getattr(self, name)
            if not 0 <= value <= 23:
                raise ValueError(f"{name} must be between 0 and 23")

    def contains(self, hour: int) -> bool:
        """Whether an hour of day falls inside the window."""
        if not self.enabled:
            return False
        if self.start_hour < self.end_hour:
            return self.start_hour <= hour < self.end_hour
        # Crosses midnight (e.g. 22 -> 8)
        return hour >= self.start_hour or hour < self.end_hour


@dataclass(frozen=True)
class TokenLimitNotificationConfig:
    """Threshold notifications. A threshold of 0 disables that level."""
    enabled: bool = False
    warning: float = 75.0
    urgent: float = 85.0
    critical: float = 95.0
    max_per_day: int = 6
    snooze_minutes: int = 15
    priorities: Dict[str, InterruptionLevel] = field(default_factory=lambda: {
        "warning": InterruptionLevel.ACTIVE,
        "urgent": InterruptionLevel.ACTIVE,
        "critical": InterruptionLevel.TIME_SENSITIVE,
    })
    quiet_hours: QuietHoursConfig = field(default_factory=QuietHoursConfig)

    def __post_init__(self):
        for name in ("warning", "urgent", "critical"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValueError(f"{name} threshold must be between 0 and 100")
        if self.max_per_day < 1:
            raise ValueError("max_per_day must be >= 1")
        if self.snooze_minutes < 1:
            raise ValueError("snooze_minutes must be >= 1")


@dataclass(frozen=True)
class SessionEndNotificationConfig:
    """Reminder shortly before the active block ends."""
    enabled: bool = False
    minutes: int = 10
    priority: InterruptionLevel = InterruptionLevel.ACTIVE

    def __post_init__(self):
        if self.minutes < 1:
            raise ValueError("session end minutes must be >= 1")


@dataclass(frozen=True)
class NotificationConfig:
    session_end: SessionEndNotificationConfig = field(default_factory=SessionEndNotificationConfig)
    token_limit: TokenLimitNotificationConfig = field(default_factory=TokenLimitNotificationConfig)


@dataclass(frozen=True)
class StorageConfig:
    db_path: str = DEFAULT_DB_PATH


@dataclass(frozen=True)
class Preferences:
    """Complete application preferences."""
    ccusage: CCUsageConfig = field(default_factory=CCUsageConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)
    token_limit: TokenLimitConfig = field(default_factory=TokenLimitConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


def load_preferences(path: Optional[str] = None) -> Preferences:
    """Load and validate preferences from a YAML file.

    With no explicit path, the default location is used and a missing file
    yields default preferences.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated Preferences object

    Raises:
        FileNotFoundError: If an explicitly given file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path or DEFAULT_CONFIG_PATH).expanduser()
    if not config_path.exists():
        if path is None:
            return Preferences()
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {config_path}: {e}")

    if raw_config is None:
        return Preferences()
    return parse_preferences(raw_config)


def parse_preferences(raw_config: Any) -> Preferences:
    """Build Preferences from an already-parsed mapping.

    Raises:
        ValueError: If configuration is invalid
    """
    data = _section(raw_config, "config")
    _check_keys(
        data,
        {'ccusage', 'polling', 'display', 'token_limit', 'notifications', 'storage'},
        "config",
    )

    ccusage = _section(data.get('ccusage', {}), "ccusage")
    _check_keys(ccusage, {'command_path', 'script_path', 'timeout'}, "ccusage")
    script_path = ccusage.get('script_path')
    if script_path is not None and not isinstance(script_path, str):
        raise ValueError("'ccusage.script_path' must be a string")

    polling = _section(data.get('polling', {}), "polling")
    _check_keys(polling, {'update_interval', 'rotation_interval'}, "polling")

    storage = _section(data.get('storage', {}), "storage")
    _check_keys(storage, {'db_path'}, "storage")

    return Preferences(
        ccusage=CCUsageConfig(
            command_path=_string(ccusage, 'command_path', "node", "ccusage"),
            script_path=script_path,
            timeout=_number(ccusage, 'timeout', 30.0, "ccusage"),
        ),
        polling=PollingConfig(
            update_interval=int(_number(polling, 'update_interval', 5, "polling")),
            rotation_interval=_number(polling, 'rotation_interval', 5.0, "polling"),
        ),
        display=_parse_display(data.get('display', {})),
        token_limit=_parse_token_limit(data.get('token_limit', {})),
        notifications=_parse_notifications(data.get('notifications', {})),
        storage=StorageConfig(
            db_path=_string(storage, 'db_path', DEFAULT_DB_PATH, "storage"),
        ),
    )


def _parse_display(raw: Any) -> DisplayConfig:
    data = _section(raw, "display")
    _check_keys(
        data,
        {'modes', 'plan', 'low_burn_rate_threshold', 'high_burn_rate_threshold',
         'cost_decimal_places'},
        "display",
    )

    modes = DisplayConfig.modes
    if 'modes' in data:
        if not isinstance(data['modes'], list):
            raise ValueError("'display.modes' must be a list")
        modes = tuple(_enum(DisplayMode, m, "display.modes") for m in data['modes'])

    low = data.get('low_burn_rate_threshold')
    high = data.get('high_burn_rate_threshold')
    for name, value in (('low_burn_rate_threshold', low), ('high_burn_rate_threshold', high)):
        if value is not None and (not isinstance(value, (int, float)) or value <= 0):
            raise ValueError(f"'display.{name}' must be > 0")
    if low is not None and high is not None and low >= high:
        raise ValueError("'display.low_burn_rate_threshold' must be below the high threshold")

    return DisplayConfig(
        modes=modes,
        plan=_enum(ClaudePlan, data.get('plan', 'pro'), "display.plan"),
        low_burn_rate_threshold=float(low) if low is not None else None,
        high_burn_rate_threshold=float(high) if high is not None else None,
        cost_decimal_places=int(_number(data, 'cost_decimal_places', 2, "display")),
    )


def _parse_token_limit(raw: Any) -> TokenLimitConfig:
    data = _section(raw, "token_limit")
    _check_keys(data, {'enabled', 'value'}, "token_limit")
    return TokenLimitConfig(
        enabled=_bool(data, 'enabled', False, "token_limit"),
        value=int(_number(data, 'value', 0, "token_limit")),
    )


def _parse_notifications(raw: Any) -> NotificationConfig:
    data = _section(raw, "notifications")
    _check_keys(data, {'session_end', 'token_limit'}, "notifications")

    session = _section(data.get('session_end', {}), "notifications.session_end")
    _check_keys(session, {'enabled', 'minutes', 'priority'}, "notifications.session_end")

    token = _section(data.get('token_limit', {}), "notifications.token_limit")
    _check_keys(
        token,
        {'enabled', 'warning', 'urgent', 'critical', 'max_per_day',
         'snooze_minutes', 'priorities', 'quiet_hours'},
        "notifications.token_limit",
    )

    priorities = dict(TokenLimitNotificationConfig().priorities)
    raw_priorities = _section(token.get('priorities', {}), "notifications.token_limit.priorities")
    _check_keys(raw_priorities, {'warning', 'urgent', 'critical'}, "notifications.token_limit.priorities")
    for kind, value in raw_priorities.items():
        priorities[kind] = _enum(InterruptionLevel, value, f"notifications.token_limit.priorities.{kind}")

    quiet = _section(token.get('quiet_hours', {}), "notifications.token_limit.quiet_hours")
    _check_keys(quiet, {'enabled', 'start_hour', 'end_hour'}, "notifications.token_limit.quiet_hours")

    path = "notifications.token_limit"
    return NotificationConfig(
        session_end=SessionEndNotificationConfig(
            enabled=_bool(session, 'enabled', False, "notifications.session_end"),
            minutes=int(_number(session, 'minutes', 10, "notifications.session_end")),
            priority=_enum(
                InterruptionLevel, session.get('priority', 'active'),
                "notifications.session_end.priority",
            ),
        ),
        token_limit=TokenLimitNotificationConfig(
            enabled=_bool(token, 'enabled', False, path),
            warning=_number(token, 'warning', 75.0, path),
            urgent=_number(token, 'urgent', 85.0, path),
            critical=_number(token, 'critical', 95.0, path),
            max_per_day=int(_number(token, 'max_per_day', 6, path)),
            snooze_minutes=int(_number(token, 'snooze_minutes', 15, path)),
            priorities=priorities,
            quiet_hours=QuietHoursConfig(
                enabled=_bool(quiet, 'enabled', False, f"{path}.quiet_hours"),
                start_hour=int(_number(quiet, 'start_hour', 22, f"{path}.quiet_hours")),
                end_hour=int(_number(quiet, 'end_hour', 8, f"{path}.quiet_hours")),
            ),
        ),
    )


def _section(value: Any, path: str) -> Dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"'{path}' must be a dictionary")
    return value


def _check_keys(data: Dict, allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _number(data: Dict, key: str, default: float, path: str) -> float:
    value = data.get(key, default)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' in {path} must be a number")
    return value


def _bool(data: Dict, key: str, default: bool, path: str) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"'{key}' in {path} must be true or false")
    return value


def _string(data: Dict, key: str, default: str, path: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{key}' in {path} must be a non-empty string")
    return value


def _enum(enum_cls, value: Any, path: str):
    if not isinstance(value, str):
        raise ValueError(f"'{path}' must be a string")
    try:
        return enum_cls(value.lower())
    except ValueError:
        valid = [member.value for member in enum_cls]
        raise ValueError(f"'{path}' must be one of: {valid}")
