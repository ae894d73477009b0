import asyncio

import pytest

from src.api.coordinator import NavigationCoordinator
from src.api.protocol import (
    UNKNOWN_TYPE_ERROR,
    DeferredReply,
    MessageRouter,
    MessageType,
    Sender,
)
from src.store.kv import StoreError
from src.store.state import StateRepository


class BrokenStore:
    """常に失敗するストア"""

    async def get(self, keys):
        msg = "disk unavailable"
        raise StoreError(msg)

    async def set(self, values):
        msg = "disk unavailable"
        raise StoreError(msg)


class TestMessageType:
    @pytest.mark.parametrize("raw", ["NAVIGATED", "FT_NAVIGATED", "ft_navigated", " navigated "])
    def test_parse_accepts_legacy_prefix(self, raw):
        assert MessageType.parse(raw) is MessageType.NAVIGATED

    @pytest.mark.parametrize("raw", [None, 42, "FT_DEBUG", ""])
    def test_parse_unknown(self, raw):
        assert MessageType.parse(raw) is None


class TestMessageRouter:
    """メッセージプロトコルのテスト"""

    @pytest.mark.asyncio
    async def test_unknown_type(self, router):
        assert await router.handle({"type": "FT_DANCE"}) == {
            "ok": False,
            "error": UNKNOWN_TYPE_ERROR,
        }

    @pytest.mark.asyncio
    async def test_non_object_message(self, router):
        reply = await router.handle(["NAVIGATED"])
        assert reply["ok"] is False

    @pytest.mark.asyncio
    async def test_ping_reports_tab(self, router):
        reply = await router.handle({"type": "PING"}, Sender(tab_id=7))
        assert reply == {"ok": True, "from": "background", "tabId": 7}

    @pytest.mark.asyncio
    async def test_navigated(self, router, clock):
        reply = await router.handle(
            {
                "type": "FT_NAVIGATED",
                "pageType": "shorts",
                "url": "https://www.youtube.com/shorts/abc",
                "timestamp": clock.now,
            }
        )
        assert reply["ok"] is True
        assert reply["blocked"] is True
        assert reply["scope"] == "shorts"
        assert reply["reason"] == "strict_shorts"
        assert reply["plan"] == "free"
        assert reply["unlocked"] is False
        assert reply["counters"]["shortsVisits"] == 1
        assert "thresholdAction" in reply

    @pytest.mark.asyncio
    async def test_navigated_requires_page_type(self, router):
        reply = await router.handle({"type": "NAVIGATED", "url": "https://x"})
        assert reply["ok"] is False
        assert "pageType" in reply["error"]

    @pytest.mark.asyncio
    async def test_navigated_rejects_bad_page_type(self, router):
        reply = await router.handle({"type": "NAVIGATED", "pageType": "CHANNEL"})
        assert reply["ok"] is False

    @pytest.mark.asyncio
    async def test_temp_unlock(self, router, clock):
        reply = await router.handle({"type": "TEMP_UNLOCK", "minutes": 5, "note": "lecture"})
        assert reply == {"ok": True, "unlockUntilEpoch": clock.now + 5 * 60_000}

    @pytest.mark.asyncio
    async def test_temp_unlock_defaults_to_ten_minutes(self, router, clock):
        reply = await router.handle({"type": "TEMP_UNLOCK"})
        assert reply["unlockUntilEpoch"] == clock.now + 10 * 60_000

    @pytest.mark.asyncio
    async def test_temp_unlock_invalid_minutes(self, router):
        reply = await router.handle({"type": "TEMP_UNLOCK", "minutes": -1})
        assert reply["ok"] is False

    @pytest.mark.asyncio
    async def test_shorts_messages(self, router):
        assert await router.handle({"type": "BUMP_SHORTS"}) == {"ok": True}
        reply = await router.handle({"type": "INCREMENT_ENGAGED_SHORTS"})
        assert reply == {"ok": True, "engagedCount": 1}

    @pytest.mark.asyncio
    async def test_set_email(self, router):
        assert await router.handle({"type": "SET_EMAIL"}) == {
            "ok": False,
            "error": "Email is required",
        }
        reply = await router.handle({"type": "SET_EMAIL", "email": "a@example.com"})
        assert reply == {"ok": True, "email": "a@example.com"}

    @pytest.mark.asyncio
    async def test_set_plan(self, router):
        reply = await router.handle({"type": "SET_PLAN", "plan": "pro"})
        assert reply == {"ok": False, "error": "Email must be set first"}

        await router.handle({"type": "SET_EMAIL", "email": "a@example.com"})
        reply = await router.handle({"type": "SET_PLAN", "plan": "gold"})
        assert reply["ok"] is False

        reply = await router.handle({"type": "SET_PLAN", "plan": "pro"})
        assert reply["ok"] is True
        assert reply["plan"] == "pro"
        assert reply["message"]

    @pytest.mark.asyncio
    async def test_reset_counters(self, router):
        await router.handle({"type": "BUMP_SHORTS"})
        reply = await router.handle({"type": "RESET_COUNTERS"})
        assert reply == {"ok": True, "message": "All counters reset successfully"}

        snapshot = await router.handle({"type": "GET_SNAPSHOT"})
        assert snapshot["state"]["shortVisitsToday"] == 0

    @pytest.mark.asyncio
    async def test_add_watch_seconds(self, router):
        reply = await router.handle(
            {"type": "ADD_WATCH_SECONDS", "seconds": 45, "category": "distracting"}
        )
        assert reply["counters"]["watchSeconds"] == 45
        assert reply["counters"]["distractingSeconds"] == 45

        reply = await router.handle({"type": "ADD_WATCH_SECONDS", "seconds": -1})
        assert reply["ok"] is False

    @pytest.mark.asyncio
    async def test_sync_plan(self, router):
        assert await router.handle({"type": "SYNC_PLAN"}) == {
            "ok": True,
            "synced": False,
            "plan": "free",
        }

    @pytest.mark.asyncio
    async def test_block_channel_messages(self, router, clock):
        reply = await router.handle({"type": "FT_BLOCK_CHANNEL_TODAY"})
        assert reply == {"ok": False, "error": "Channel is required"}

        reply = await router.handle({"type": "FT_BLOCK_CHANNEL_TODAY", "channel": "Gaming "})
        assert reply == {"ok": True, "channel": "Gaming"}
        reply = await router.handle({"type": "BLOCK_CHANNEL_PERMANENT", "channel": "Drama"})
        assert reply == {"ok": True, "channel": "Drama"}

        reply = await router.handle(
            {
                "type": "NAVIGATED",
                "pageType": "watch",
                "url": "https://www.youtube.com/watch?v=abc",
                "channel": "drama",
                "timestamp": clock.now,
            }
        )
        assert reply["blocked"] is True
        assert reply["scope"] == "watch"
        assert reply["reason"] == "channel_blocked"

    @pytest.mark.asyncio
    async def test_block_shorts_today(self, router, store):
        reply = await router.handle({"type": "FT_BLOCK_SHORTS_TODAY"})
        assert reply == {"ok": False, "error": "Shorts self-block requires a Pro plan"}

        await store.set({"plan": "pro"})
        reply = await router.handle({"type": "BLOCK_SHORTS_TODAY"})
        assert reply == {"ok": True, "blockShortsToday": True}
        reply = await router.handle({"type": "BLOCK_SHORTS_TODAY", "enabled": False})
        assert reply == {"ok": True, "blockShortsToday": False}

    @pytest.mark.asyncio
    async def test_set_time_limit(self, router, store):
        reply = await router.handle({"type": "FT_SET_TIME_LIMIT", "minutes": 45})
        assert reply == {"ok": True, "dailyTimeLimitMinutes": 45}
        assert store.dump()["dailyTimeLimitMinutes"] == 45

        reply = await router.handle({"type": "SET_TIME_LIMIT", "minutes": -5})
        assert reply["ok"] is False
        assert store.dump()["dailyTimeLimitMinutes"] == 45

        reply = await router.handle({"type": "SET_TIME_LIMIT"})
        assert reply == {"ok": True, "dailyTimeLimitMinutes": None}

    @pytest.mark.asyncio
    async def test_storage_failure_becomes_error_reply(self, clock):
        router = MessageRouter(NavigationCoordinator(StateRepository(BrokenStore()), clock=clock))
        reply = await router.handle({"type": "NAVIGATED", "pageType": "HOME"})
        assert reply == {"ok": False, "error": "disk unavailable"}


class TestDeferredReply:
    @pytest.mark.asyncio
    async def test_post_resolves_later(self, router):
        reply = router.post({"type": "PING"}, Sender(tab_id=3))
        assert isinstance(reply, DeferredReply)
        result = await reply.wait(timeout=1)
        assert result["tabId"] == 3
        assert reply.sent is True

    @pytest.mark.asyncio
    async def test_reply_sent_at_most_once(self):
        reply = DeferredReply()
        assert reply.send({"ok": True}) is True
        assert reply.send({"ok": False}) is False
        assert await reply.wait() == {"ok": True}

    @pytest.mark.asyncio
    async def test_wait_timeout(self):
        reply = DeferredReply()
        with pytest.raises(asyncio.TimeoutError):
            await reply.wait(timeout=0.01)
        assert reply.sent is False
