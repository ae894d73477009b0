"""Threshold ladder: maps the per-period category tally to an action code.

Pure function, independent of page type. Distracting consequences always win
over productive ones.
"""

from __future__ import annotations

from src.model.models import ActionCode, ThresholdTally
from src.policy.plans import PLAN_FREE, PLAN_TEST, normalize_plan

__all__ = ["distracting_tier", "evaluate_thresholds"]

NEUTRAL_FREE_COUNT = 2

# (count, seconds) per tier, lowest first
DISTRACTING_TIERS: tuple[tuple[int, int], ...] = (
    (3, 20 * 60),
    (4, 40 * 60),
    (5, 60 * 60),
)

# 30分で productive_nudge_5s に届く（count と time は対称ではない）
PRODUCTIVE_LADDER: tuple[tuple[int, int, ActionCode], ...] = (
    (7, 90 * 60, ActionCode.PRODUCTIVE_BREAK),
    (5, 60 * 60, ActionCode.PRODUCTIVE_NUDGE_30S),
    (3, 30 * 60, ActionCode.PRODUCTIVE_NUDGE_5S),
)


def distracting_tier(count: int, seconds: int) -> int:
    """Highest tier reached by either the count or the time dimension."""
    tier = 0
    for level, (min_count, min_seconds) in enumerate(DISTRACTING_TIERS, start=1):
        if count >= min_count or seconds >= min_seconds:
            tier = level
    return tier


def _distracting_action(tier: int, plan: str) -> ActionCode:
    if tier == 0:
        return ActionCode.NONE
    if tier == 1:
        return ActionCode.NUDGE_10S
    if tier == 2:
        return ActionCode.NUDGE_30S
    if plan == PLAN_FREE:
        return ActionCode.UPGRADE_PROMPT
    return ActionCode.HARD_BLOCK


def evaluate_thresholds(counters: ThresholdTally, plan: str | None) -> ActionCode:
    """Return the graduated action for the current tally.

    Args:
        counters: 今期間の分類別集計（回転・加算済みのもの）
        plan: free / pro / trial / test。未知のプランは free 扱い。

    Returns:
        ActionCode: ``none`` when nothing applies.
    """
    plan_id = normalize_plan(plan)
    if plan_id == PLAN_TEST:
        return ActionCode.NONE

    neutral_count = counters.get("neutral_count", 0)
    excess_neutral = max(0, neutral_count - NEUTRAL_FREE_COUNT)
    effective_count = counters.get("distracting_count", 0) + excess_neutral
    effective_seconds = counters.get("distracting_seconds", 0)

    action = _distracting_action(
        distracting_tier(effective_count, effective_seconds), plan_id
    )
    if action is not ActionCode.NONE:
        return action

    productive_count = counters.get("productive_count", 0)
    productive_seconds = counters.get("productive_seconds", 0)
    for min_count, min_seconds, productive_action in PRODUCTIVE_LADDER:
        if productive_count >= min_count or productive_seconds >= min_seconds:
            return productive_action

    return ActionCode.NONE
