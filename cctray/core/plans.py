"""
Claude plans and burn rate categories.

Each plan carries default burn rate thresholds (tokens per minute) used to
label usage intensity as low, medium or high.
"""

from enum import Enum
from typing import Optional, Tuple


class BurnRateLevel(Enum):
    """Usage intensity derived from tokens per minute."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def emoji(self) -> str:
        return {"low": "🟢", "medium": "🟡", "high": "🔴"}[self.value]

    @property
    def label(self) -> str:
        return {"low": "LOW", "medium": "MED", "high": "HIGH"}[self.value]


class ClaudePlan(Enum):
    """Supported billing plans."""
    PRO = "pro"
    MAX5X = "max5x"
    MAX20X = "max20x"
    API_BASED = "api_based"
    CUSTOM = "custom"

    @property
    def title(self) -> str:
        return {
            "pro": "Pro Plan",
            "max5x": "Max Plan 5x",
            "max20x": "Max Plan 20x",
            "api_based": "API-Based",
            "custom": "Custom",
        }[self.value]

    @property
    def default_thresholds(self) -> Tuple[float, float]:
        """(low, high) burn rate thresholds in tokens per minute."""
        return {
            "pro": (200.0, 400.0),
            "max5x": (500.0, 800.0),
            "max20x": (1000.0, 1500.0),
            "api_based": (150.0, 300.0),
            "custom": (300.0, 700.0),
        }[self.value]


def burn_rate_level(
    tokens_per_minute: float,
    plan: ClaudePlan,
    low: Optional[float] = None,
    high: Optional[float] = None,
) -> BurnRateLevel:
    """Categorize a burn rate against plan thresholds.

    Explicit ``low``/``high`` values override the plan defaults.
    """
    default_low, default_high = plan.default_thresholds
    low = default_low if low is None else low
    high = default_high if high is None else high

    if tokens_per_minute < low:
        return BurnRateLevel.LOW
    if tokens_per_minute < high:
        return BurnRateLevel.MEDIUM
    return BurnRateLevel.HIGH
