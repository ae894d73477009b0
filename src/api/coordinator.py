"""Navigation coordinator: the per-event pipeline behind the message protocol.

Order per navigation: defaults → rotation → (background plan sync) →
counting → state read → plan → classification → decision →
sticky/allowance persistence → response. Rotation and unlock checks run on
the service clock, never on the timestamp the detector reports.
Counting is never rolled back; a retry after a failure re-reads the already
incremented counter.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import replace
from typing import Any
from urllib.parse import parse_qs, urlparse

from src.api.services.classifier import ClassifierService
from src.api.services.plan_sync import PlanSyncService
from src.config.logger import logger
from src.model.models import (
    Category,
    ClassificationResult,
    ContentCategory,
    NavigationEvent,
    PageType,
    UsageState,
)
from src.policy import unlock
from src.policy.counters import (
    add_seconds,
    category_for_page,
    count_category_for_content,
    increment,
    seconds_category_for_content,
)
from src.policy.period import RESET_FIELDS, reset_usage, rotate_if_needed
from src.policy.plans import (
    PLAN_FREE,
    PLAN_PRO,
    effective_config,
    is_pro_experience,
    normalize_plan,
)
from src.policy.rules import (
    BlockContext,
    apply_sticky,
    apply_threshold_action,
    channel_matches,
    consume_allowance,
    evaluate_block,
)
from src.policy.thresholds import evaluate_thresholds
from src.store.state import StateRepository

__all__ = ["InputError", "NavigationCoordinator", "SETTABLE_PLANS"]

SETTABLE_PLANS = (PLAN_FREE, PLAN_PRO)


class InputError(ValueError):
    """Malformed or missing request input; reported as ``{ok: False}``."""


def _now_ms() -> int:
    return int(time.time() * 1000)


def search_query_from_url(url: str) -> str:
    """``/results?search_query=...`` から検索語を取り出す."""
    try:
        query = parse_qs(urlparse(url).query)
    except ValueError:
        return ""
    values = query.get("search_query") or []
    return values[0].strip() if values else ""


class NavigationCoordinator:
    def __init__(
        self,
        repo: StateRepository,
        classifier: ClassifierService | None = None,
        plan_sync: PlanSyncService | None = None,
        *,
        allowance_enabled: bool = False,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.repo = repo
        self.classifier = classifier
        self.plan_sync = plan_sync
        self.allowance_enabled = allowance_enabled
        self._clock = clock
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Shared steps
    async def _rotate(self, now: int) -> UsageState:
        await self.repo.ensure_defaults()
        state = await self.repo.load()
        rotated = rotate_if_needed(state, now)
        if rotated is not state:
            await self.repo.save(
                rotated,
                fields=["last_reset_key", *RESET_FIELDS],
                counters=list(Category),
            )
            logger.info(
                f"Counters rotated: {state.last_reset_key or '<empty>'} -> "
                f"{rotated.last_reset_key}"
            )
        return rotated

    async def _bump(self, category: Category, amount: int = 1) -> UsageState:
        state = await self.repo.load()
        state = increment(state, category, amount)
        await self.repo.save(state, counters=[category])
        return state

    def _classification_input(
        self, event: NavigationEvent
    ) -> tuple[str, str] | None:
        if event.page_type is PageType.WATCH and event.video_title:
            return event.video_title, "watch"
        if event.page_type is PageType.SEARCH:
            query = search_query_from_url(event.url)
            if query:
                return query, "search"
        return None

    async def _classify(
        self, state: UsageState, event: NavigationEvent, plan: str
    ) -> ClassificationResult | None:
        if self.classifier is None or not is_pro_experience(plan):
            return None
        if not state.email:
            logger.info("No email set, cannot classify content")
            return None
        payload = self._classification_input(event)
        if payload is None:
            return None
        text, context = payload
        return await self.classifier.classify(state.email, text, context)

    def _start_plan_sync(self) -> None:
        """Fire-and-forget debounced sync; never delays or fails a decision."""
        if self.plan_sync is None:
            return
        task = asyncio.create_task(self._sync_in_background(self.plan_sync))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _sync_in_background(self, plan_sync: PlanSyncService) -> None:
        try:
            await plan_sync.sync()
        except Exception:  # noqa: BLE001
            logger.exception("Plan sync failed on navigation")

    async def drain(self) -> None:
        """Wait for background work started by earlier navigations."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @staticmethod
    def counters_payload(state: UsageState) -> dict[str, int]:
        return {
            "searches": state.count(Category.SEARCH),
            "shortsVisits": state.count(Category.SHORTS_VISIT),
            "shortsEngaged": state.count(Category.SHORTS_ENGAGED),
            "shortsSeconds": state.count(Category.SHORTS_SECONDS),
            "watchVisits": state.count(Category.WATCH_VISIT),
            "watchSeconds": state.count(Category.WATCH_SECONDS),
            "distractingCount": state.count(Category.DISTRACTING_COUNT),
            "distractingSeconds": state.count(Category.DISTRACTING_SECONDS),
            "productiveCount": state.count(Category.PRODUCTIVE_COUNT),
            "productiveSeconds": state.count(Category.PRODUCTIVE_SECONDS),
            "neutralCount": state.count(Category.NEUTRAL_COUNT),
            "allowanceVideosLeft": state.allowance_videos_left,
            "allowanceSecondsLeft": state.allowance_seconds_left,
        }

    # ------------------------------------------------------------------
    # Operations
    async def handle_navigation(self, event: NavigationEvent) -> dict[str, Any]:
        now = self._clock()
        await self._rotate(now)
        self._start_plan_sync()

        category = category_for_page(event.page_type)
        if category is not None:
            await self._bump(category)

        state = await self.repo.load()
        plan = normalize_plan(state.plan)
        config = effective_config(plan, state.daily_time_limit_minutes)
        unlocked = unlock.is_active(state, now)

        classification = await self._classify(state, event, plan)
        if classification is not None:
            state.last_classification = classification.to_dict()
            touched: list[Category] = []
            if event.page_type is PageType.WATCH:
                tally_category = count_category_for_content(classification.category)
                state = increment(state, tally_category)
                touched.append(tally_category)
            await self.repo.save(state, fields=["last_classification"], counters=touched)

        ctx = BlockContext(
            plan=plan,
            config=config,
            page_type=event.page_type,
            searches_today=state.count(Category.SEARCH),
            watch_seconds_today=state.count(Category.WATCH_SECONDS),
            sticky_blocked=state.sticky_blocked,
            unlocked=unlocked,
            classification=classification,
            allowance_enabled=self.allowance_enabled,
            allowance_videos_left=state.allowance_videos_left,
            allowance_seconds_left=state.allowance_seconds_left,
            channel=event.channel,
            blocked_channels=state.blocked_channels,
            blocked_channels_today=state.blocked_channels_today,
            block_shorts_today=state.block_shorts_today,
        )
        decision = evaluate_block(ctx)
        action = evaluate_thresholds(state.tally(), plan)
        decision = apply_threshold_action(decision, action)

        state, spent = consume_allowance(decision, state)
        if spent:
            await self.repo.save(state, fields=["allowance_videos_left"])

        state, latched = apply_sticky(decision, state)
        if latched:
            await self.repo.save(state, fields=["sticky_blocked"])
            logger.info(f"Global block latched for period ({decision.reason})")

        response: dict[str, Any] = {
            "ok": True,
            "pageType": event.page_type.value,
            **decision.to_dict(),
            "plan": plan,
            "counters": self.counters_payload(state),
            "unlocked": unlocked,
            "unlockRemainingMs": unlock.remaining_ms(state, now),
            "classification": classification.to_dict() if classification else None,
        }
        logger.info(
            f"NAV {event.page_type.value} {event.url!r}: blocked={decision.blocked} "
            f"scope={decision.scope.value} reason={decision.reason} action={action.value}"
        )
        return response

    async def temp_unlock(self, minutes: float) -> int:
        now = self._clock()
        state = await self._rotate(now)
        try:
            state, expiry = unlock.grant(state, minutes, now)
        except ValueError as e:
            raise InputError(str(e)) from e
        await self.repo.save(state, fields=["unlock_until_epoch_ms"])
        logger.info(f"Temporary unlock for {minutes}min")
        return expiry

    async def bump_shorts(self) -> int:
        await self._rotate(self._clock())
        state = await self._bump(Category.SHORTS_VISIT)
        return state.count(Category.SHORTS_VISIT)

    async def increment_engaged_shorts(self) -> int:
        await self._rotate(self._clock())
        state = await self._bump(Category.SHORTS_ENGAGED)
        return state.count(Category.SHORTS_ENGAGED)

    async def add_watch_seconds(
        self,
        seconds: int,
        category: ContentCategory | None = None,
        *,
        shorts: bool = False,
    ) -> UsageState:
        """Accumulate watch time, attributing it to a content category when known.

        Without an explicit category the last classification is used. With the
        allowance layer on, distracting time also spends the seconds allowance.
        """
        if seconds < 0:
            msg = "seconds must be non-negative"
            raise InputError(msg)
        await self._rotate(self._clock())
        state = await self.repo.load()

        duration = Category.SHORTS_SECONDS if shorts else Category.WATCH_SECONDS
        state = add_seconds(state, duration, seconds)
        touched = [duration]

        if category is None and state.last_classification:
            try:
                category = ContentCategory(state.last_classification.get("category"))
            except ValueError:
                category = None
        seconds_category = seconds_category_for_content(category) if category else None
        if seconds_category is not None:
            state = add_seconds(state, seconds_category, seconds)
            touched.append(seconds_category)

        fields: list[str] = []
        if self.allowance_enabled and category is ContentCategory.DISTRACTING:
            left = max(0, state.allowance_seconds_left - seconds)
            state = replace(state, allowance_seconds_left=left)
            fields.append("allowance_seconds_left")

        await self.repo.save(state, fields=fields, counters=touched)
        return state

    async def set_email(self, email: str | None) -> str:
        email = (email or "").strip()
        if not email:
            msg = "Email is required"
            raise InputError(msg)
        state = await self.repo.load()
        state = replace(state, email=email)
        await self.repo.save(state, fields=["email"])
        logger.info(f"Email saved: {email}")
        return email

    async def set_plan(self, plan: str | None) -> tuple[str, str]:
        """Store a new plan; returns ``(plan, message)``.

        The email must be set before the plan is validated. A failed remote
        update keeps the local change.
        """
        await self.repo.ensure_defaults()
        state = await self.repo.load()
        if not state.email:
            msg = "Email must be set first"
            raise InputError(msg)

        plan = (plan or "").strip().lower()
        if plan not in SETTABLE_PLANS:
            msg = "Plan must be 'free' or 'pro'"
            raise InputError(msg)

        state = replace(state, plan=plan)
        await self.repo.save(state, fields=["plan"])
        logger.info(f"Plan set to {plan}")

        if self.plan_sync is None:
            return plan, "Plan set successfully"
        if await self.plan_sync.push_plan(state.email, plan):
            return plan, "Plan set and synced successfully"
        return plan, "Plan set locally; remote sync failed"

    async def block_channel(self, channel: str | None, *, permanent: bool) -> str:
        """Add a channel to the permanent or today-only block list."""
        name = (channel or "").strip()
        if not name:
            msg = "Channel is required"
            raise InputError(msg)
        state = await self._rotate(self._clock())
        field_name = "blocked_channels" if permanent else "blocked_channels_today"
        names: list[str] = getattr(state, field_name)
        if channel_matches(name, names):
            logger.info(f"Channel already blocked: {name}")
            return name
        state = replace(state, **{field_name: [*names, name]})
        await self.repo.save(state, fields=[field_name])
        logger.info(f"Channel blocked ({'permanent' if permanent else 'today'}): {name}")
        return name

    async def set_shorts_block(self, enabled: bool) -> bool:
        """Pro self-block for Shorts, cleared at the next rotation."""
        state = await self._rotate(self._clock())
        if enabled and not is_pro_experience(state.plan):
            msg = "Shorts self-block requires a Pro plan"
            raise InputError(msg)
        state = replace(state, block_shorts_today=enabled)
        await self.repo.save(state, fields=["block_shorts_today"])
        return enabled

    async def set_time_limit(self, minutes: int | None) -> int | None:
        """Store the user's daily time limit (``None`` restores the plan default)."""
        if minutes is not None and minutes < 0:
            msg = "minutes must be non-negative"
            raise InputError(msg)
        await self.repo.ensure_defaults()
        state = replace(await self.repo.load(), daily_time_limit_minutes=minutes)
        await self.repo.save(state, fields=["daily_time_limit_minutes"])
        logger.info(f"Daily time limit set to {minutes if minutes is not None else 'plan default'}")
        return minutes

    async def reset_counters(self) -> None:
        await self.repo.ensure_defaults()
        state = reset_usage(await self.repo.load())
        await self.repo.save(state, fields=list(RESET_FIELDS), counters=list(Category))
        logger.info("All counters reset")

    async def sync_plan(self) -> tuple[bool, str]:
        synced = False
        if self.plan_sync is not None:
            synced = await self.plan_sync.sync(force=True)
        state = await self.repo.load()
        return synced, normalize_plan(state.plan)

    async def snapshot(self) -> dict[str, Any]:
        return await self.repo.snapshot()
