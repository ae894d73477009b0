"""Mapping between :class:`UsageState` and the persisted key layout."""

from __future__ import annotations

import copy
from collections.abc import Iterable
from typing import Any

from src.config.logger import logger
from src.model.models import (
    DEFAULT_ALLOWANCE_SECONDS,
    DEFAULT_ALLOWANCE_VIDEOS,
    Category,
    ResetPeriod,
    UsageState,
)
from src.store.kv import KeyValueStore

__all__ = ["COUNTER_KEYS", "DEFAULTS", "FIELD_KEYS", "StateRepository"]

COUNTER_KEYS: dict[Category, str] = {
    Category.SEARCH: "searchesToday",
    Category.SHORTS_VISIT: "shortVisitsToday",
    Category.SHORTS_ENGAGED: "shortsEngagedToday",
    Category.SHORTS_SECONDS: "shortsSecondsToday",
    Category.WATCH_VISIT: "watchVisitsToday",
    Category.WATCH_SECONDS: "watchSecondsToday",
    Category.DISTRACTING_COUNT: "distractingCount",
    Category.DISTRACTING_SECONDS: "distractingSeconds",
    Category.PRODUCTIVE_COUNT: "productiveCount",
    Category.PRODUCTIVE_SECONDS: "productiveSeconds",
    Category.NEUTRAL_COUNT: "neutralCount",
}

FIELD_KEYS: dict[str, str] = {
    "plan": "plan",
    "reset_period": "resetPeriod",
    "last_reset_key": "lastResetKey",
    "sticky_blocked": "stickyBlocked",
    "unlock_until_epoch_ms": "unlockUntilEpochMs",
    "email": "email",
    "allowance_videos_left": "allowanceVideosLeft",
    "allowance_seconds_left": "allowanceSecondsLeft",
    "last_classification": "lastClassification",
    "blocked_channels": "blockedChannels",
    "blocked_channels_today": "blockedChannelsToday",
    "block_shorts_today": "blockShortsToday",
    "daily_time_limit_minutes": "dailyTimeLimitMinutes",
}

DEFAULTS: dict[str, Any] = {
    "plan": "free",
    "resetPeriod": "daily",
    "lastResetKey": "",
    "stickyBlocked": False,
    "unlockUntilEpochMs": 0,
    "email": "",
    "allowanceVideosLeft": DEFAULT_ALLOWANCE_VIDEOS,
    "allowanceSecondsLeft": DEFAULT_ALLOWANCE_SECONDS,
    "lastClassification": None,
    "blockedChannels": [],
    "blockedChannelsToday": [],
    "blockShortsToday": False,
    "dailyTimeLimitMinutes": None,
    **dict.fromkeys(COUNTER_KEYS.values(), 0),
}


def _as_count(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


def _as_names(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def _as_limit(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return None


def _as_period(value: Any) -> ResetPeriod:
    try:
        return ResetPeriod(value)
    except ValueError:
        return ResetPeriod.DAILY


class StateRepository:
    """Reads and writes :class:`UsageState` through a key-value store.

    Writes are partial: callers name the fields and counters they changed so
    that concurrent handlers only clobber what they actually touched.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def ensure_defaults(self) -> None:
        """Fill in any missing keys. Safe to call on every event."""
        current = await self.store.get(list(DEFAULTS))
        missing = {k: v for k, v in DEFAULTS.items() if k not in current}
        if missing:
            await self.store.set(missing)
            logger.info(f"Initialized {len(missing)} missing state keys")

    async def load(self) -> UsageState:
        raw = await self.store.get(list(DEFAULTS))
        values = {**DEFAULTS, **raw}
        last_classification = values["lastClassification"]
        return UsageState(
            plan=str(values["plan"] or "free"),
            reset_period=_as_period(values["resetPeriod"]),
            last_reset_key=str(values["lastResetKey"] or ""),
            counters={c: _as_count(values[k]) for c, k in COUNTER_KEYS.items()},
            sticky_blocked=bool(values["stickyBlocked"]),
            unlock_until_epoch_ms=_as_count(values["unlockUntilEpochMs"]),
            email=str(values["email"] or ""),
            allowance_videos_left=_as_count(values["allowanceVideosLeft"]),
            allowance_seconds_left=_as_count(values["allowanceSecondsLeft"]),
            last_classification=(
                last_classification if isinstance(last_classification, dict) else None
            ),
            blocked_channels=_as_names(values["blockedChannels"]),
            blocked_channels_today=_as_names(values["blockedChannelsToday"]),
            block_shorts_today=bool(values["blockShortsToday"]),
            daily_time_limit_minutes=_as_limit(values["dailyTimeLimitMinutes"]),
        )

    async def save(
        self,
        state: UsageState,
        *,
        fields: Iterable[str] = (),
        counters: Iterable[Category] = (),
    ) -> None:
        values = self.to_values(state, fields=fields, counters=counters)
        if values:
            await self.store.set(values)

    async def snapshot(self) -> dict[str, Any]:
        """Raw persisted values, for diagnostics."""
        raw = await self.store.get(list(DEFAULTS))
        return {**copy.deepcopy(DEFAULTS), **raw}

    @staticmethod
    def to_values(
        state: UsageState,
        *,
        fields: Iterable[str] = (),
        counters: Iterable[Category] = (),
    ) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for name in fields:
            key = FIELD_KEYS[name]
            value = getattr(state, name)
            if isinstance(value, list):
                value = list(value)
            values[key] = value.value if isinstance(value, ResetPeriod) else value
        for category in counters:
            values[COUNTER_KEYS[category]] = state.count(category)
        return values
