"""Typed request/response contract between the detector and the policy service.

Every reply carries ``ok``. Handlers run asynchronously; the transport gets a
:class:`DeferredReply` that is resolved exactly once when the pipeline
finishes.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.api.coordinator import InputError, NavigationCoordinator
from src.config.logger import logger
from src.model.models import ContentCategory, NavigationEvent, PageType
from src.policy.unlock import DEFAULT_UNLOCK_MINUTES

__all__ = [
    "DeferredReply",
    "MessageRouter",
    "MessageType",
    "Sender",
    "UNKNOWN_TYPE_ERROR",
]

UNKNOWN_TYPE_ERROR = "Unknown message type"
LEGACY_PREFIX = "FT_"

Reply = dict[str, Any]


class MessageType(str, Enum):
    NAVIGATED = "NAVIGATED"
    TEMP_UNLOCK = "TEMP_UNLOCK"
    PING = "PING"
    BUMP_SHORTS = "BUMP_SHORTS"
    INCREMENT_ENGAGED_SHORTS = "INCREMENT_ENGAGED_SHORTS"
    SET_EMAIL = "SET_EMAIL"
    SET_PLAN = "SET_PLAN"
    RESET_COUNTERS = "RESET_COUNTERS"
    ADD_WATCH_SECONDS = "ADD_WATCH_SECONDS"
    SYNC_PLAN = "SYNC_PLAN"
    GET_SNAPSHOT = "GET_SNAPSHOT"
    BLOCK_CHANNEL_TODAY = "BLOCK_CHANNEL_TODAY"
    BLOCK_CHANNEL_PERMANENT = "BLOCK_CHANNEL_PERMANENT"
    BLOCK_SHORTS_TODAY = "BLOCK_SHORTS_TODAY"
    SET_TIME_LIMIT = "SET_TIME_LIMIT"

    @classmethod
    def parse(cls, raw: Any) -> MessageType | None:
        """``FT_NAVIGATED`` と ``NAVIGATED`` の両方を受け付ける."""
        if not isinstance(raw, str):
            return None
        name = raw.strip().upper()
        if name.startswith(LEGACY_PREFIX):
            name = name[len(LEGACY_PREFIX) :]
        try:
            return cls(name)
        except ValueError:
            return None


@dataclass
class Sender:
    """Where a message came from (the detector's tab, when known)."""

    tab_id: int | None = None


# --- Pydantic request models ---


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class NavigatedRequest(_Request):
    page_type: PageType = Field(alias="pageType")
    url: str = ""
    video_title: str | None = Field(default=None, alias="videoTitle")
    channel: str | None = None
    timestamp: int | None = None

    @field_validator("page_type", mode="before")
    @classmethod
    def upper_page_type(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v


class TempUnlockRequest(_Request):
    minutes: float = Field(default=DEFAULT_UNLOCK_MINUTES, gt=0)
    note: str | None = None


class SetEmailRequest(_Request):
    email: str | None = None


class SetPlanRequest(_Request):
    plan: str | None = None


class BlockChannelRequest(_Request):
    channel: str | None = None


class BlockShortsRequest(_Request):
    enabled: bool = True


class SetTimeLimitRequest(_Request):
    minutes: int | None = Field(default=None, ge=0)


class AddWatchSecondsRequest(_Request):
    seconds: int = Field(ge=0)
    category: ContentCategory | None = None
    shorts: bool = False


def _validation_message(err: ValidationError) -> str:
    first = err.errors()[0]
    loc = ".".join(str(part) for part in first.get("loc", ()))
    return f"{loc}: {first.get('msg', 'invalid value')}" if loc else str(first.get("msg"))


# --- Deferred replies ---


class DeferredReply:
    """A reply that is sent later, at most once."""

    def __init__(self) -> None:
        self._future: asyncio.Future[Reply] = asyncio.get_running_loop().create_future()

    @property
    def sent(self) -> bool:
        return self._future.done()

    def send(self, payload: Reply) -> bool:
        """Resolve the reply; later calls are ignored and return ``False``."""
        if self._future.done():
            return False
        self._future.set_result(payload)
        return True

    async def wait(self, timeout: float | None = None) -> Reply:
        return await asyncio.wait_for(asyncio.shield(self._future), timeout)


# --- Router ---


class MessageRouter:
    """Dispatch protocol messages to the coordinator."""

    def __init__(self, coordinator: NavigationCoordinator) -> None:
        self.coordinator = coordinator
        self._tasks: set[asyncio.Task[None]] = set()
        self._handlers: dict[MessageType, Callable[[dict[str, Any], Sender], Awaitable[Reply]]] = {
            MessageType.NAVIGATED: self._navigated,
            MessageType.TEMP_UNLOCK: self._temp_unlock,
            MessageType.PING: self._ping,
            MessageType.BUMP_SHORTS: self._bump_shorts,
            MessageType.INCREMENT_ENGAGED_SHORTS: self._increment_engaged_shorts,
            MessageType.SET_EMAIL: self._set_email,
            MessageType.SET_PLAN: self._set_plan,
            MessageType.RESET_COUNTERS: self._reset_counters,
            MessageType.ADD_WATCH_SECONDS: self._add_watch_seconds,
            MessageType.SYNC_PLAN: self._sync_plan,
            MessageType.GET_SNAPSHOT: self._snapshot,
            MessageType.BLOCK_CHANNEL_TODAY: self._block_channel_today,
            MessageType.BLOCK_CHANNEL_PERMANENT: self._block_channel_permanent,
            MessageType.BLOCK_SHORTS_TODAY: self._block_shorts_today,
            MessageType.SET_TIME_LIMIT: self._set_time_limit,
        }

    def post(self, message: dict[str, Any], sender: Sender | None = None) -> DeferredReply:
        """Start handling ``message`` and return its reply handle immediately."""
        reply = DeferredReply()
        task = asyncio.create_task(self._run(message, sender or Sender(), reply))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return reply

    async def _run(self, message: dict[str, Any], sender: Sender, reply: DeferredReply) -> None:
        reply.send(await self.handle(message, sender))

    async def handle(self, message: Any, sender: Sender | None = None) -> Reply:
        """Handle one message. Never raises; failures become ``{ok: False}``."""
        if not isinstance(message, dict):
            return {"ok": False, "error": "Message must be an object"}
        msg_type = MessageType.parse(message.get("type"))
        if msg_type is None:
            logger.warning(f"Unknown message type: {message.get('type')!r}")
            return {"ok": False, "error": UNKNOWN_TYPE_ERROR}

        handler = self._handlers[msg_type]
        try:
            return await handler(message, sender or Sender())
        except ValidationError as e:
            return {"ok": False, "error": _validation_message(e)}
        except InputError as e:
            return {"ok": False, "error": str(e)}
        except Exception as e:  # noqa: BLE001
            logger.exception(f"Error handling {msg_type.value}")
            return {"ok": False, "error": str(e) or type(e).__name__}

    # --- handlers ---

    async def _navigated(self, message: dict[str, Any], sender: Sender) -> Reply:
        req = NavigatedRequest.model_validate(message)
        event = NavigationEvent(
            page_type=req.page_type,
            url=req.url,
            timestamp=req.timestamp or 0,
            video_title=req.video_title,
            channel=req.channel,
        )
        return await self.coordinator.handle_navigation(event)

    async def _temp_unlock(self, message: dict[str, Any], sender: Sender) -> Reply:
        req = TempUnlockRequest.model_validate(message)
        expiry = await self.coordinator.temp_unlock(req.minutes)
        if req.note:
            logger.info(f"Unlock note: {req.note}")
        return {"ok": True, "unlockUntilEpoch": expiry}

    async def _ping(self, message: dict[str, Any], sender: Sender) -> Reply:
        return {"ok": True, "from": "background", "tabId": sender.tab_id}

    async def _bump_shorts(self, message: dict[str, Any], sender: Sender) -> Reply:
        await self.coordinator.bump_shorts()
        return {"ok": True}

    async def _increment_engaged_shorts(self, message: dict[str, Any], sender: Sender) -> Reply:
        count = await self.coordinator.increment_engaged_shorts()
        return {"ok": True, "engagedCount": count}

    async def _set_email(self, message: dict[str, Any], sender: Sender) -> Reply:
        req = SetEmailRequest.model_validate(message)
        email = await self.coordinator.set_email(req.email)
        return {"ok": True, "email": email}

    async def _set_plan(self, message: dict[str, Any], sender: Sender) -> Reply:
        req = SetPlanRequest.model_validate(message)
        plan, text = await self.coordinator.set_plan(req.plan)
        return {"ok": True, "message": text, "plan": plan}

    async def _reset_counters(self, message: dict[str, Any], sender: Sender) -> Reply:
        await self.coordinator.reset_counters()
        return {"ok": True, "message": "All counters reset successfully"}

    async def _add_watch_seconds(self, message: dict[str, Any], sender: Sender) -> Reply:
        req = AddWatchSecondsRequest.model_validate(message)
        state = await self.coordinator.add_watch_seconds(
            req.seconds, req.category, shorts=req.shorts
        )
        return {"ok": True, "counters": self.coordinator.counters_payload(state)}

    async def _sync_plan(self, message: dict[str, Any], sender: Sender) -> Reply:
        synced, plan = await self.coordinator.sync_plan()
        return {"ok": True, "synced": synced, "plan": plan}

    async def _snapshot(self, message: dict[str, Any], sender: Sender) -> Reply:
        return {"ok": True, "state": await self.coordinator.snapshot()}

    async def _block_channel_today(self, message: dict[str, Any], sender: Sender) -> Reply:
        req = BlockChannelRequest.model_validate(message)
        channel = await self.coordinator.block_channel(req.channel, permanent=False)
        return {"ok": True, "channel": channel}

    async def _block_channel_permanent(self, message: dict[str, Any], sender: Sender) -> Reply:
        req = BlockChannelRequest.model_validate(message)
        channel = await self.coordinator.block_channel(req.channel, permanent=True)
        return {"ok": True, "channel": channel}

    async def _block_shorts_today(self, message: dict[str, Any], sender: Sender) -> Reply:
        req = BlockShortsRequest.model_validate(message)
        enabled = await self.coordinator.set_shorts_block(req.enabled)
        return {"ok": True, "blockShortsToday": enabled}

    async def _set_time_limit(self, message: dict[str, Any], sender: Sender) -> Reply:
        req = SetTimeLimitRequest.model_validate(message)
        minutes = await self.coordinator.set_time_limit(req.minutes)
        return {"ok": True, "dailyTimeLimitMinutes": minutes}
