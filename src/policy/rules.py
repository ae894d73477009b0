"""Pure blocking decision.

Given the current context, decide block or allow. No storage access here;
the coordinator persists the sticky projection returned by
:func:`apply_sticky`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from src.model.models import (
    DEFAULT_ALLOWANCE_SECONDS,
    ActionCode,
    ClassificationResult,
    ContentCategory,
    Decision,
    PageType,
    PlanConfig,
    Scope,
    UsageState,
)

__all__ = [
    "REASONS",
    "BlockContext",
    "apply_sticky",
    "apply_threshold_action",
    "channel_matches",
    "consume_allowance",
    "evaluate_block",
]


class REASONS:
    """Reason strings shown to the detector."""

    OK = "ok"
    UNLOCKED = "temporarily_unlocked"
    ALREADY_BLOCKED = "already_blocked"
    STRICT_SHORTS = "strict_shorts"
    SEARCH_THRESHOLD = "search_threshold"
    TIME_LIMIT = "time_limit"
    AI_ALLOWANCE_USED = "ai_allowance_used"
    AI_NO_ALLOWANCE = "ai_distracting_no_allowance"
    CHANNEL_BLOCKED = "channel_blocked"
    CHANNEL_BLOCKED_TODAY = "channel_blocked_today"
    THRESHOLD_HARD_BLOCK = "threshold_hard_block"


@dataclass
class BlockContext:
    """Everything :func:`evaluate_block` looks at for one navigation."""

    plan: str
    config: PlanConfig
    page_type: PageType
    searches_today: int = 0
    watch_seconds_today: int = 0
    sticky_blocked: bool = False
    unlocked: bool = False
    classification: ClassificationResult | None = None
    allowance_enabled: bool = False
    allowance_videos_left: int = 0
    allowance_seconds_left: int = DEFAULT_ALLOWANCE_SECONDS
    channel: str | None = None
    blocked_channels: list[str] = field(default_factory=list)
    blocked_channels_today: list[str] = field(default_factory=list)
    block_shorts_today: bool = False


def channel_matches(channel: str | None, names: list[str]) -> bool:
    """Case-insensitive exact match against a list of channel names."""
    if not channel:
        return False
    wanted = channel.strip().lower()
    return any(name.strip().lower() == wanted for name in names)


def _channel_decision(ctx: BlockContext) -> Decision | None:
    if ctx.page_type is not PageType.WATCH:
        return None
    if channel_matches(ctx.channel, ctx.blocked_channels):
        return Decision(blocked=True, scope=Scope.WATCH, reason=REASONS.CHANNEL_BLOCKED)
    if channel_matches(ctx.channel, ctx.blocked_channels_today):
        return Decision(
            blocked=True, scope=Scope.WATCH, reason=REASONS.CHANNEL_BLOCKED_TODAY
        )
    return None


def _allowance_decision(ctx: BlockContext) -> Decision | None:
    """Deprecated allowance strategy for distracting videos.

    Only consulted when enabled, on WATCH pages, and when the classifier said
    ``distracting``. Search classifications never block.
    """
    if not ctx.allowance_enabled or ctx.classification is None:
        return None
    if ctx.page_type is not PageType.WATCH:
        return None
    if ctx.classification.category is not ContentCategory.DISTRACTING:
        return None
    if ctx.allowance_videos_left > 0 and ctx.allowance_seconds_left > 0:
        return Decision(blocked=False, scope=Scope.NONE, reason=REASONS.AI_ALLOWANCE_USED)
    return Decision(blocked=True, scope=Scope.WATCH, reason=REASONS.AI_NO_ALLOWANCE)


def evaluate_block(ctx: BlockContext) -> Decision:
    """Strict precedence, first match wins."""
    # 一時解除中はすべてのルールをバイパスする（sticky block も含む）
    if ctx.unlocked:
        return Decision(blocked=False, scope=Scope.NONE, reason=REASONS.UNLOCKED)

    # sticky は現在のカウンタで再評価しない
    if ctx.sticky_blocked:
        return Decision(blocked=True, scope=Scope.GLOBAL, reason=REASONS.ALREADY_BLOCKED)

    channel = _channel_decision(ctx)
    if channel is not None:
        return channel

    allowance = _allowance_decision(ctx)
    if allowance is not None:
        return allowance

    cfg = ctx.config
    if ctx.page_type is PageType.SHORTS and (cfg.strict_shorts or ctx.block_shorts_today):
        return Decision(blocked=True, scope=Scope.SHORTS, reason=REASONS.STRICT_SHORTS)

    if ctx.page_type is PageType.SEARCH and ctx.searches_today >= cfg.search_threshold:
        return Decision(
            blocked=True, scope=Scope.SEARCH, reason=REASONS.SEARCH_THRESHOLD
        )

    if cfg.time_limit_seconds > 0 and ctx.watch_seconds_today >= cfg.time_limit_seconds:
        return Decision(blocked=True, scope=Scope.GLOBAL, reason=REASONS.TIME_LIMIT)

    return Decision(blocked=False, scope=Scope.NONE, reason=REASONS.OK)


def apply_threshold_action(decision: Decision, action: ActionCode) -> Decision:
    """Attach the ladder's action; ``hard_block`` escalates an allowed decision.

    An unlock window still wins: ``temporarily_unlocked`` is never escalated.
    """
    decision = replace(decision, threshold_action=action)
    if (
        action is ActionCode.HARD_BLOCK
        and not decision.blocked
        and decision.reason != REASONS.UNLOCKED
    ):
        return replace(
            decision,
            blocked=True,
            scope=Scope.GLOBAL,
            reason=REASONS.THRESHOLD_HARD_BLOCK,
        )
    return decision


def apply_sticky(decision: Decision, state: UsageState) -> tuple[UsageState, bool]:
    """Latch a global block for the rest of the period.

    Returns ``(state, changed)``; a second global decision is a no-op.
    """
    if decision.blocked and decision.scope is Scope.GLOBAL and not state.sticky_blocked:
        return replace(state, sticky_blocked=True), True
    return state, False


def consume_allowance(decision: Decision, state: UsageState) -> tuple[UsageState, bool]:
    """Spend one allowance video when the allowance layer let content through."""
    if decision.reason != REASONS.AI_ALLOWANCE_USED or state.allowance_videos_left <= 0:
        return state, False
    return replace(state, allowance_videos_left=state.allowance_videos_left - 1), True
