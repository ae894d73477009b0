"""Temporary unlock window: a time-bounded bypass of every blocking rule."""

from __future__ import annotations

from dataclasses import replace

from src.model.models import UsageState

__all__ = ["DEFAULT_UNLOCK_MINUTES", "grant", "is_active", "remaining_ms"]

DEFAULT_UNLOCK_MINUTES = 10
MS_PER_MINUTE = 60_000


def grant(state: UsageState, minutes: float, now: int) -> tuple[UsageState, int]:
    """Open an unlock window of ``minutes`` starting at ``now`` (epoch ms).

    Returns the updated state and the expiry timestamp.
    """
    if minutes <= 0:
        msg = "minutes must be positive"
        raise ValueError(msg)
    expiry = now + int(minutes * MS_PER_MINUTE)
    return replace(state, unlock_until_epoch_ms=expiry), expiry


def is_active(state: UsageState, now: int) -> bool:
    return now < state.unlock_until_epoch_ms


def remaining_ms(state: UsageState, now: int) -> int:
    return max(0, state.unlock_until_epoch_ms - now)
