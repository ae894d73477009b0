"""Remote plan sync: overwrite the stored plan from the license server."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from urllib.parse import quote

import requests

from src.api.services.guard import call_with_timeout
from src.config.logger import logger
from src.config.settings import Settings
from src.store.state import StateRepository

HTTP_OK_MIN = 200
HTTP_OK_MAX = 300
SYNCABLE_PLANS = ("free", "pro", "trial", "test")

__all__ = ["PlanSyncError", "PlanSyncService", "create_plan_sync_service"]


class PlanSyncError(RuntimeError):
    pass


class PlanSyncService:
    """Debounced plan sync. Failures keep the previously stored plan."""

    def __init__(
        self,
        repo: StateRepository,
        base_url: str,
        timeout: float = 5.0,
        debounce_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.repo = repo
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.debounce_seconds = debounce_seconds
        self._clock = clock
        self.last_sync_time: float | None = None
        self._in_flight = False

    # ------------------------------------------------------------------
    # Blocking HTTP calls (run through call_with_timeout)
    def fetch_plan(self, email: str) -> str:
        url = f"{self.base_url}/license/verify?email={quote(email)}"
        response = requests.get(
            url, timeout=self.timeout, headers={"Content-Type": "application/json"}
        )
        status_code: int = response.status_code
        if not HTTP_OK_MIN <= status_code < HTTP_OK_MAX:
            msg = f"license server returned HTTP {status_code}"
            raise PlanSyncError(msg)
        try:
            data = response.json()
        except ValueError as e:
            msg = "license server returned invalid JSON"
            raise PlanSyncError(msg) from e

        raw_plan = data.get("plan") if isinstance(data, dict) else None
        plan = raw_plan.lower() if isinstance(raw_plan, str) else None
        if plan not in SYNCABLE_PLANS:
            msg = f"invalid plan from server: {raw_plan!r}"
            raise PlanSyncError(msg)
        return plan

    def update_remote_plan(self, email: str, plan: str) -> None:
        response = requests.post(
            f"{self.base_url}/user/update-plan",
            json={"email": email, "plan": plan},
            timeout=self.timeout,
        )
        status_code: int = response.status_code
        if not HTTP_OK_MIN <= status_code < HTTP_OK_MAX:
            msg = f"update-plan returned HTTP {status_code}"
            raise PlanSyncError(msg)

    # ------------------------------------------------------------------
    def _debounced(self) -> bool:
        if self.last_sync_time is None:
            return False
        return self._clock() - self.last_sync_time < self.debounce_seconds

    async def sync(self, *, force: bool = False) -> bool:
        """Fetch the plan for the stored email and persist it.

        Returns ``True`` only when a plan was fetched and stored. Unforced calls
        are skipped while another sync is running or within the debounce window.
        """
        if force:
            return await self._sync_once()
        if self._in_flight or self._debounced():
            logger.debug("Plan sync skipped (debounced)")
            return False

        self._in_flight = True
        try:
            return await self._sync_once()
        finally:
            self._in_flight = False

    async def _sync_once(self) -> bool:
        state = await self.repo.load()
        email = state.email.strip()
        if not email:
            logger.info("No email set, skipping plan sync")
            return False

        outcome = await call_with_timeout(self.fetch_plan, email, timeout=self.timeout)
        if not outcome.ok or outcome.value is None:
            logger.warning(
                f"Plan sync failed ({outcome.status.value}): {outcome.error}; "
                f"keeping cached plan {state.plan!r}"
            )
            return False

        state.plan = outcome.value
        await self.repo.save(state, fields=["plan"])
        self.last_sync_time = self._clock()
        logger.info(f"Plan synced from server: {outcome.value}")
        return True

    async def push_plan(self, email: str, plan: str) -> bool:
        outcome = await call_with_timeout(
            self.update_remote_plan, email, plan, timeout=self.timeout
        )
        if not outcome.ok:
            logger.warning(f"Remote plan update failed ({outcome.status.value}): {outcome.error}")
        return outcome.ok

    async def run_periodic(self, interval_seconds: float) -> None:
        """Background loop started with the HTTP app; never raises except on cancel."""
        while True:
            try:
                await self.sync()
            except Exception:  # noqa: BLE001
                logger.exception("Periodic plan sync crashed; will retry")
            await asyncio.sleep(interval_seconds)


def create_plan_sync_service(
    repo: StateRepository, settings: Settings
) -> PlanSyncService:
    return PlanSyncService(
        repo,
        base_url=settings.server_url,
        timeout=settings.sync_timeout,
        debounce_seconds=settings.sync_debounce_seconds,
    )
