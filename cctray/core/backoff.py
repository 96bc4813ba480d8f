"""
Error classification and backoff.

Failures are bucketed into categories, each with its own exponential backoff
curve. A change of category starts a fresh backoff run.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from .errors import (
    CommandError,
    CommandNotFound,
    EmptyResponse,
    ExecutionFailed,
    ExecutionInProgress,
    MalformedResponse,
    NoOutput,
    PermissionDenied,
    Timeout,
)

INITIAL_BACKOFF_DELAY: float = 1.0
TRANSITION_WINDOW_SECONDS: float = 10.0
TRANSITION_MAX_DELAY: float = 5.0


class ErrorCategory(Enum):
    """Failure categories with distinct retry behavior."""
    JSON_PARSING = "json_parsing"
    COMMAND_EXECUTION = "command_execution"
    PERMISSION = "permission"
    NETWORK = "network"
    UNKNOWN = "unknown"


# (base delay, max delay) in seconds
BACKOFF_LIMITS: Dict[ErrorCategory, Tuple[float, float]] = {
    ErrorCategory.JSON_PARSING: (2.0, 30.0),
    ErrorCategory.COMMAND_EXECUTION: (5.0, 60.0),
    ErrorCategory.PERMISSION: (10.0, 120.0),
    ErrorCategory.NETWORK: (3.0, 45.0),
    ErrorCategory.UNKNOWN: (5.0, 60.0),
}

_STRUCTURED_CATEGORIES = (
    ((EmptyResponse, MalformedResponse), ErrorCategory.JSON_PARSING),
    ((CommandNotFound, ExecutionFailed, NoOutput, ExecutionInProgress), ErrorCategory.COMMAND_EXECUTION),
    ((PermissionDenied,), ErrorCategory.PERMISSION),
    ((Timeout,), ErrorCategory.NETWORK),
)


def categorize_error(error: BaseException) -> ErrorCategory:
    """Classify a failure, by type when known, else by message keywords."""
    if isinstance(error, CommandError):
        for types, category in _STRUCTURED_CATEGORIES:
            if isinstance(error, types):
                return category

    message = str(error).lower()
    if any(word in message for word in ("json", "decode", "parse")):
        return ErrorCategory.JSON_PARSING
    if any(word in message for word in ("permission", "denied")):
        return ErrorCategory.PERMISSION
    if any(word in message for word in ("network", "connection", "timeout")):
        return ErrorCategory.NETWORK
    return ErrorCategory.UNKNOWN


def backoff_delay(category: ErrorCategory, consecutive_errors: int) -> float:
    """Capped exponential delay: ``base * 2^(n-1)``, at most the category max."""
    base, maximum = BACKOFF_LIMITS[category]
    exponent = max(consecutive_errors - 1, 0)
    return min(base * (2 ** exponent), maximum)


@dataclass
class PollState:
    """Mutable error-recovery state owned by the poll loop."""
    consecutive_error_count: int = 0
    last_error_category: Optional[ErrorCategory] = None
    current_backoff_delay: float = INITIAL_BACKOFF_DELAY
    seconds_until_next_refresh: int = 0

    @property
    def in_backoff(self) -> bool:
        return self.consecutive_error_count > 1

    def reset_errors(self) -> None:
        self.consecutive_error_count = 0
        self.last_error_category = None
        self.current_backoff_delay = INITIAL_BACKOFF_DELAY

    def record_failure(
        self,
        category: ErrorCategory,
        in_transition_window: bool = False,
    ) -> Optional[float]:
        """Register a failure and compute the retry delay.

        Returns:
            Seconds until a scheduled retry, or None when the failure should
            simply retry on the next regular tick
        """
        if self.last_error_category is not None and self.last_error_category != category:
            self.consecutive_error_count = 0

        self.consecutive_error_count += 1
        self.last_error_category = category

        if not self.in_backoff:
            return None

        delay = backoff_delay(category, self.consecutive_error_count)
        if in_transition_window:
            delay = min(delay, TRANSITION_MAX_DELAY)
        self.current_backoff_delay = delay
        return delay
