"""Domain types shared by the policy engine, the coordinator and the API."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypedDict

__all__ = [
    "DEFAULT_ALLOWANCE_SECONDS",
    "DEFAULT_ALLOWANCE_VIDEOS",
    "ActionCode",
    "Category",
    "ClassificationResult",
    "ContentCategory",
    "Decision",
    "NavigationEvent",
    "PageType",
    "PlanConfig",
    "ResetPeriod",
    "Scope",
    "ThresholdTally",
    "UsageState",
]

DEFAULT_ALLOWANCE_VIDEOS = 1
DEFAULT_ALLOWANCE_SECONDS = 600


class PageType(str, Enum):
    """検出されたページの種類."""

    SEARCH = "SEARCH"
    SHORTS = "SHORTS"
    WATCH = "WATCH"
    HOME = "HOME"
    OTHER = "OTHER"


class ResetPeriod(str, Enum):
    """カウンタをリセットする周期."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Scope(str, Enum):
    NONE = "none"
    SHORTS = "shorts"
    SEARCH = "search"
    WATCH = "watch"
    GLOBAL = "global"


class ContentCategory(str, Enum):
    PRODUCTIVE = "productive"
    NEUTRAL = "neutral"
    DISTRACTING = "distracting"


class ActionCode(str, Enum):
    """Graduated consequences returned by the threshold ladder."""

    NONE = "none"
    NUDGE_10S = "nudge_10s"
    NUDGE_30S = "nudge_30s"
    HARD_BLOCK = "hard_block"
    UPGRADE_PROMPT = "upgrade_prompt"
    PRODUCTIVE_NUDGE_5S = "productive_nudge_5s"
    PRODUCTIVE_NUDGE_30S = "productive_nudge_30s"
    PRODUCTIVE_BREAK = "productive_break"


class Category(str, Enum):
    """Counter categories tracked per reset period."""

    SEARCH = "search"
    SHORTS_VISIT = "shortsVisit"
    SHORTS_ENGAGED = "shortsEngaged"
    SHORTS_SECONDS = "shortsSeconds"
    WATCH_VISIT = "watchVisit"
    WATCH_SECONDS = "watchSeconds"
    DISTRACTING_COUNT = "distractingCount"
    DISTRACTING_SECONDS = "distractingSeconds"
    PRODUCTIVE_COUNT = "productiveCount"
    PRODUCTIVE_SECONDS = "productiveSeconds"
    NEUTRAL_COUNT = "neutralCount"


class ThresholdTally(TypedDict):
    """閾値ラダーに渡す分類別の集計."""

    distracting_count: int
    distracting_seconds: int
    productive_count: int
    productive_seconds: int
    neutral_count: int


@dataclass(frozen=True)
class PlanConfig:
    """Limits and flags for one subscription tier."""

    search_threshold: int
    strict_shorts: bool
    time_limit_seconds: int


@dataclass
class NavigationEvent:
    """A single navigation observed by the detector."""

    page_type: PageType
    url: str
    timestamp: int  # epoch ms, as reported by the detector
    video_title: str | None = None
    channel: str | None = None


@dataclass
class ClassificationResult:
    category: ContentCategory
    allowed: bool
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "allowed": self.allowed,
            "reason": self.reason,
        }


@dataclass
class Decision:
    """ブロック判定の結果."""

    blocked: bool
    scope: Scope
    reason: str
    threshold_action: ActionCode | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "blocked": self.blocked,
            "scope": self.scope.value,
            "reason": self.reason,
        }
        if self.threshold_action is not None:
            data["thresholdAction"] = self.threshold_action.value
        return data


@dataclass
class UsageState:
    """Per-user usage snapshot for the current reset period.

    Counters never go negative. ``sticky_blocked`` is only cleared by a period
    rotation or an explicit counter reset.
    ``blocked_channels`` survives rotation; the ``*_today`` blocks do not.
    """

    plan: str = "free"
    reset_period: ResetPeriod = ResetPeriod.DAILY
    last_reset_key: str = ""
    counters: dict[Category, int] = field(
        default_factory=lambda: dict.fromkeys(Category, 0)
    )
    sticky_blocked: bool = False
    unlock_until_epoch_ms: int = 0
    email: str = ""
    allowance_videos_left: int = DEFAULT_ALLOWANCE_VIDEOS
    allowance_seconds_left: int = DEFAULT_ALLOWANCE_SECONDS
    last_classification: dict[str, Any] | None = None
    blocked_channels: list[str] = field(default_factory=list)
    blocked_channels_today: list[str] = field(default_factory=list)
    block_shorts_today: bool = False
    # None: plan default, 0: no limit
    daily_time_limit_minutes: int | None = None

    def count(self, category: Category) -> int:
        return self.counters.get(category, 0)

    def tally(self) -> ThresholdTally:
        return {
            "distracting_count": self.count(Category.DISTRACTING_COUNT),
            "distracting_seconds": self.count(Category.DISTRACTING_SECONDS),
            "productive_count": self.count(Category.PRODUCTIVE_COUNT),
            "productive_seconds": self.count(Category.PRODUCTIVE_SECONDS),
            "neutral_count": self.count(Category.NEUTRAL_COUNT),
        }
