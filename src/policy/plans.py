"""Static plan table and resolver."""

from __future__ import annotations

import sys
from dataclasses import replace
from types import MappingProxyType

from src.model.models import PlanConfig

__all__ = [
    "CONFIG_BY_PLAN",
    "PLAN_FREE",
    "PLAN_PRO",
    "PLAN_TEST",
    "PLAN_TRIAL",
    "effective_config",
    "is_pro_experience",
    "normalize_plan",
    "resolve",
]

PLAN_FREE = "free"
PLAN_PRO = "pro"
PLAN_TRIAL = "trial"
PLAN_TEST = "test"

# free は厳しめ、pro/trial は緩め、test は絶対にブロックしない
CONFIG_BY_PLAN = MappingProxyType(
    {
        PLAN_FREE: PlanConfig(
            search_threshold=5,
            strict_shorts=True,
            time_limit_seconds=60 * 60,
        ),
        PLAN_PRO: PlanConfig(
            search_threshold=15,
            strict_shorts=False,
            time_limit_seconds=90 * 60,
        ),
        PLAN_TRIAL: PlanConfig(
            search_threshold=15,
            strict_shorts=False,
            time_limit_seconds=90 * 60,
        ),
        PLAN_TEST: PlanConfig(
            search_threshold=sys.maxsize,
            strict_shorts=False,
            time_limit_seconds=0,
        ),
    }
)


def normalize_plan(plan_id: str | None) -> str:
    """Lower-case known plan ids; anything else becomes ``free``."""
    plan = (plan_id or "").strip().lower()
    return plan if plan in CONFIG_BY_PLAN else PLAN_FREE


def resolve(plan_id: str | None) -> PlanConfig:
    return CONFIG_BY_PLAN[normalize_plan(plan_id)]


def is_pro_experience(plan_id: str | None) -> bool:
    """Trial users get every Pro feature, including classification."""
    return normalize_plan(plan_id) in (PLAN_PRO, PLAN_TRIAL)


def effective_config(plan_id: str | None, daily_limit_minutes: int | None = None) -> PlanConfig:
    """Plan config with the user's own daily time limit applied.

    ``None`` keeps the plan default and ``0`` turns the limit off. The test
    plan ignores the user setting.
    """
    plan = normalize_plan(plan_id)
    config = CONFIG_BY_PLAN[plan]
    if daily_limit_minutes is None or plan == PLAN_TEST:
        return config
    return replace(config, time_limit_seconds=max(0, daily_limit_minutes) * 60)
