"""
Usage data model.

Mirrors the JSON emitted by ``ccusage blocks --live --json --active``.
Snapshots are immutable; each poll replaces the previous one entirely.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .plans import ClaudePlan, burn_rate_level


class DisplayMode(Enum):
    """Metrics that can be rotated through in the title."""
    COST = "cost"
    BURN_RATE = "burn_rate"
    REMAINING_TIME = "remaining_time"
    PROJECTED_COST = "projected_cost"
    API_CALLS = "api_calls"
    SESSIONS_TODAY = "sessions_today"
    TOKEN_LIMIT = "token_limit"
    TOKEN_USAGE = "token_usage"


@dataclass(frozen=True)
class TokenCounts:
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0


@dataclass(frozen=True)
class BurnRate:
    tokens_per_minute: float = 0.0
    cost_per_hour: float = 0.0


@dataclass(frozen=True)
class Projection:
    total_tokens: int = 0
    total_cost: float = 0.0
    remaining_minutes: int = 0


@dataclass(frozen=True)
class TokenLimitStatus:
    """Token limit progress reported when ``--token-limit`` is passed."""
    limit: int
    projected_usage: int
    percent_used: float
    status: str


@dataclass(frozen=True)
class Block:
    """One billing window reported by ccusage."""
    id: str
    start_time: str
    end_time: str
    actual_end_time: str
    is_active: bool
    cost_usd: float
    total_tokens: int
    token_counts: TokenCounts = field(default_factory=TokenCounts)
    burn_rate: BurnRate = field(default_factory=BurnRate)
    projection: Projection = field(default_factory=Projection)
    token_limit_status: Optional[TokenLimitStatus] = None
    is_gap: bool = False
    entries: int = 0
    models: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Block":
        """Build a block from its ccusage JSON object.

        Raises:
            KeyError: If a required key is missing
            TypeError: If ``data`` is not a mapping
        """
        if not isinstance(data, dict):
            raise TypeError(f"block must be an object, got {type(data).__name__}")

        counts = data.get("tokenCounts") or {}
        burn = data.get("burnRate") or {}
        projection = data.get("projection") or {}
        limit = data.get("tokenLimitStatus")

        return cls(
            id=str(data["id"]),
            start_time=data["startTime"],
            end_time=data["endTime"],
            actual_end_time=data.get("actualEndTime") or data["endTime"],
            is_active=bool(data.get("isActive", False)),
            cost_usd=float(data.get("costUSD", 0.0)),
            total_tokens=int(data.get("totalTokens", 0)),
            token_counts=TokenCounts(
                input_tokens=int(counts.get("inputTokens", 0)),
                output_tokens=int(counts.get("outputTokens", 0)),
                cache_creation_input_tokens=int(counts.get("cacheCreationInputTokens", 0)),
                cache_read_input_tokens=int(counts.get("cacheReadInputTokens", 0)),
            ),
            burn_rate=BurnRate(
                tokens_per_minute=float(burn.get("tokensPerMinute", 0.0)),
                cost_per_hour=float(burn.get("costPerHour", 0.0)),
            ),
            projection=Projection(
                total_tokens=int(projection.get("totalTokens", 0)),
                total_cost=float(projection.get("totalCost", 0.0)),
                remaining_minutes=int(projection.get("remainingMinutes", 0)),
            ),
            token_limit_status=TokenLimitStatus(
                limit=int(limit["limit"]),
                projected_usage=int(limit["projectedUsage"]),
                percent_used=float(limit["percentUsed"]),
                status=str(limit.get("status", "")),
            ) if limit else None,
            is_gap=bool(data.get("isGap", False)),
            entries=int(data.get("entries", 0)),
            models=tuple(data.get("models") or ()),
        )

    def remaining_seconds(self) -> Optional[float]:
        """Seconds between the last activity and the block end, if positive."""
        end = parse_timestamp(self.end_time)
        actual_end = parse_timestamp(self.actual_end_time)
        if end is None or actual_end is None:
            return None
        remaining = (end - actual_end).total_seconds()
        return remaining if remaining > 0 else None


@dataclass(frozen=True)
class UsageResponse:
    """Top-level ccusage response."""
    blocks: List[Block]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageResponse":
        if not isinstance(data, dict):
            raise TypeError("response must be a JSON object with a 'blocks' array")
        blocks = data["blocks"]
        if not isinstance(blocks, list):
            raise TypeError("'blocks' must be an array")
        return cls(blocks=[Block.from_dict(b) for b in blocks])

    @property
    def active_block(self) -> Optional[Block]:
        return next((b for b in self.blocks if b.is_active), None)


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse a ccusage ISO-8601 timestamp, returning None if unparseable."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def format_number(num: int) -> str:
    """Compact number formatting: 1.2M, 3.4k, 999."""
    if num >= 1_000_000:
        return f"{num / 1_000_000:.1f}M"
    if num >= 1_000:
        return f"{num / 1_000:.1f}k"
    return str(num)


def format_duration(seconds: Optional[float]) -> str:
    if seconds is None:
        return "N/A"
    total = int(seconds)
    hours, minutes = total // 3600, total % 3600 // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def format_title(
    block: Block,
    mode: DisplayMode,
    plan: ClaudePlan = ClaudePlan.PRO,
    low_threshold: Optional[float] = None,
    high_threshold: Optional[float] = None,
    decimal_places: int = 2,
) -> str:
    """Render the one-line title for a display mode.

    SESSIONS_TODAY depends on monitor state and is rendered by the monitor.
    """
    if mode == DisplayMode.COST:
        return f" ${block.cost_usd:.{decimal_places}f}"
    if mode == DisplayMode.BURN_RATE:
        level = burn_rate_level(
            block.burn_rate.tokens_per_minute, plan, low_threshold, high_threshold
        )
        return f" {level.emoji} {level.label}"
    if mode == DisplayMode.REMAINING_TIME:
        return f" ⏱️ {format_duration(block.remaining_seconds())}"
    if mode == DisplayMode.PROJECTED_COST:
        return f" 📈 ${block.projection.total_cost:.{decimal_places}f}"
    if mode == DisplayMode.API_CALLS:
        return f" 🎯 {format_number(block.entries)}"
    if mode == DisplayMode.TOKEN_LIMIT:
        status = block.token_limit_status
        if status is None:
            return " 🎚️ N/A"
        return f" 🎚️ {status.percent_used:.0f}%"
    if mode == DisplayMode.TOKEN_USAGE:
        return f" 📊 {format_number(block.total_tokens)}"
    raise ValueError(f"Unsupported display mode for block title: {mode}")


def format_detailed_info(
    block: Block,
    plan: ClaudePlan = ClaudePlan.PRO,
    low_threshold: Optional[float] = None,
    high_threshold: Optional[float] = None,
) -> List[str]:
    """Multi-line summary of a block."""
    start = parse_timestamp(block.start_time)
    start_text = start.astimezone().strftime("%H:%M") if start else "N/A"
    level = burn_rate_level(
        block.burn_rate.tokens_per_minute, plan, low_threshold, high_threshold
    )

    lines = [
        f"⏱️ Session: Started {start_text} / Remaining {format_duration(block.remaining_seconds())}",
        f"💰 Current Cost: ${block.cost_usd:.2f}",
        f"🔥 Burn Rate: {level.emoji} {level.label} ({int(block.burn_rate.tokens_per_minute)} token/min)",
        f"📊 Tokens Used: {format_number(block.total_tokens)}",
        f"📈 Projected Cost: ${block.projection.total_cost:.2f}",
        f"🎯 API Calls: {format_number(block.entries)}",
    ]
    status = block.token_limit_status
    if status is not None:
        lines.append(
            f"🎚️ Token Limit: {status.percent_used:.1f}% of {format_number(status.limit)} ({status.status})"
        )
    return lines
