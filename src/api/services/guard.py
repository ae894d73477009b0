"""Bounded-timeout wrapper for blocking collaborator calls.

Blocking calls run in a worker thread so the event loop keeps serving other
messages; the outcome is tagged instead of raised.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")

__all__ = ["CallOutcome", "CallStatus", "call_with_timeout"]


class CallStatus(str, Enum):
    SUCCESS = "success"
    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass
class CallOutcome(Generic[T]):
    status: CallStatus
    value: T | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is CallStatus.SUCCESS


async def call_with_timeout(
    func: Callable[..., T],
    *args: Any,
    timeout: float,
    **kwargs: Any,
) -> CallOutcome[T]:
    """Run ``func`` in a thread, giving up after ``timeout`` seconds."""
    try:
        value = await asyncio.wait_for(
            asyncio.to_thread(func, *args, **kwargs), timeout=timeout
        )
    except asyncio.TimeoutError:
        return CallOutcome(status=CallStatus.TIMEOUT, error=f"timed out after {timeout}s")
    except Exception as e:  # noqa: BLE001
        return CallOutcome(status=CallStatus.ERROR, error=str(e) or type(e).__name__)
    return CallOutcome(status=CallStatus.SUCCESS, value=value)
