"""Reset-period keys and idempotent counter rotation."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from src.model.models import (
    DEFAULT_ALLOWANCE_SECONDS,
    DEFAULT_ALLOWANCE_VIDEOS,
    Category,
    ResetPeriod,
    UsageState,
)

__all__ = [
    "RESET_FIELDS",
    "current_key",
    "reset_usage",
    "rotate_if_needed",
]

# rotation と RESET_COUNTERS で書き戻すフィールド
RESET_FIELDS = (
    "sticky_blocked",
    "unlock_until_epoch_ms",
    "allowance_videos_left",
    "allowance_seconds_left",
    "last_classification",
    "blocked_channels_today",
    "block_shorts_today",
)


def _local_datetime(now: int) -> datetime:
    return datetime.fromtimestamp(now / 1000)


def daily_key(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d")


def weekly_key(moment: datetime) -> str:
    """ISO-8601 week id, e.g. ``2025-W44``.

    The ISO year can differ from the calendar year around New Year
    (2021-01-03 belongs to ``2020-W53``).
    """
    iso_year, iso_week, _ = moment.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def monthly_key(moment: datetime) -> str:
    return moment.strftime("%Y-%m")


def current_key(period: ResetPeriod | str, now: int) -> str:
    """Bucket identifier for ``now`` (epoch ms, local time).

    Unknown period values fall back to daily.
    """
    moment = _local_datetime(now)
    if period == ResetPeriod.WEEKLY:
        return weekly_key(moment)
    if period == ResetPeriod.MONTHLY:
        return monthly_key(moment)
    return daily_key(moment)


def reset_usage(state: UsageState) -> UsageState:
    """Zero every counter and clear per-period flags, keeping the bucket key."""
    return replace(
        state,
        counters=dict.fromkeys(Category, 0),
        sticky_blocked=False,
        unlock_until_epoch_ms=0,
        allowance_videos_left=DEFAULT_ALLOWANCE_VIDEOS,
        allowance_seconds_left=DEFAULT_ALLOWANCE_SECONDS,
        last_classification=None,
        blocked_channels_today=[],
        block_shorts_today=False,
    )


def _is_newer(key: str, last_key: str) -> bool:
    # keys of one period type share a fixed width and sort chronologically
    if len(key) == len(last_key):
        return key > last_key
    return key != last_key


def rotate_if_needed(state: UsageState, now: int) -> UsageState:
    """Reset ``state`` when ``now`` falls in a different bucket.

    Returns the same object when no rotation is needed, so callers can test
    ``rotated is not state`` to decide whether anything must be persisted.
    A key older than the stored one never rotates: the bucket only moves
    forward.
    """
    key = current_key(state.reset_period, now)
    if state.last_reset_key and not _is_newer(key, state.last_reset_key):
        return state
    return replace(reset_usage(state), last_reset_key=key)
