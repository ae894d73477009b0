"""FastAPI app exposing the message protocol to the detector over HTTP."""

import asyncio
import contextlib
from collections import deque
from typing import Any

from fastapi import Body, FastAPI, HTTPException

from src.api.coordinator import NavigationCoordinator
from src.api.protocol import MessageRouter, MessageType, Sender
from src.api.services.classifier import create_classifier_service
from src.api.services.plan_sync import PlanSyncService, create_plan_sync_service
from src.config.logger import configure_file_logging, logger
from src.config.settings import Settings, load_settings
from src.store.kv import JsonFileStore, KeyValueStore, MemoryStore
from src.store.state import StateRepository

# 応答待ちの上限（秒）。分類・同期のタイムアウトより長くしておく
REPLY_TIMEOUT = 30.0

app = FastAPI(
    title="FocusTube Policy Service",
    description="Usage-based block/allow decisions for video-site navigation",
)

# グローバルな状態管理
STATE: dict[str, Any] = {
    "settings": None,
    "router": None,
    "plan_sync": None,
    "sync_task": None,
    "last_decision": None,
    "logs": deque(maxlen=100),  # ログを保存 (最大100件)
}

# --- ロギング ---


def log_message(message: str) -> None:
    """ロガーに出力し、ログキューにも追加する."""
    logger.info(message)
    STATE["logs"].append(message)


# --- 組み立て ---


def create_store(settings: Settings) -> KeyValueStore:
    if settings.state_file:
        return JsonFileStore(settings.state_file)
    return MemoryStore()


def build_router(
    settings: Settings, store: KeyValueStore | None = None
) -> tuple[MessageRouter, PlanSyncService]:
    """設定からルーターと関連サービスを組み立てる."""
    repo = StateRepository(store or create_store(settings))
    plan_sync = create_plan_sync_service(repo, settings)
    coordinator = NavigationCoordinator(
        repo,
        classifier=create_classifier_service(settings),
        plan_sync=plan_sync,
        allowance_enabled=settings.allowance_layer,
    )
    return MessageRouter(coordinator), plan_sync


# --- アプリケーションのライフサイクルイベント ---


# on_event hooks (FastAPI now prefers lifespan handlers)
@app.on_event("startup")  # pyright: ignore[reportDeprecated]
async def startup_event() -> None:
    """起動時にサービスを組み立て、プラン同期ループを開始する."""
    settings = load_settings()
    configure_file_logging(settings.log_file)
    router, plan_sync = build_router(settings)
    STATE["settings"] = settings
    STATE["router"] = router
    STATE["plan_sync"] = plan_sync
    STATE["sync_task"] = asyncio.create_task(
        plan_sync.run_periodic(settings.sync_interval_seconds)
    )
    log_message(
        f"Policy service started (server={settings.server_url}, "
        f"store={'file' if settings.state_file else 'memory'})"
    )


@app.on_event("shutdown")  # pyright: ignore[reportDeprecated]
async def shutdown_event() -> None:
    router: MessageRouter | None = STATE["router"]
    if router is not None:
        await router.coordinator.drain()
    task: asyncio.Task[None] | None = STATE["sync_task"]
    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        STATE["sync_task"] = None


# --- APIエンドポイント定義 ---


@app.post("/messages")
async def post_message(
    message: dict[str, Any] = Body(...),  # noqa: B008
    tab_id: int | None = None,
) -> dict[str, Any]:
    """検出側からのメッセージを処理し、処理完了後に応答を返す."""
    router: MessageRouter | None = STATE["router"]
    if router is None:
        raise HTTPException(status_code=503, detail="Policy service not ready")

    reply = router.post(message, Sender(tab_id=tab_id))
    try:
        response = await reply.wait(timeout=REPLY_TIMEOUT)
    except asyncio.TimeoutError:
        log_message(f"Reply timed out for {message.get('type')!r}")
        return {"ok": False, "error": "Timed out waiting for reply"}

    if MessageType.parse(message.get("type")) is MessageType.NAVIGATED and response.get("ok"):
        STATE["last_decision"] = response
        log_message(
            f"Navigation processed. Blocked: {response['blocked']} "
            f"({response['scope']}/{response['reason']}) | "
            f"action={response.get('thresholdAction', 'N/A')}"
        )
    elif not response.get("ok"):
        log_message(f"Message {message.get('type')!r} failed: {response.get('error')}")
    return response


@app.get("/status")
async def get_current_status() -> dict[str, Any]:
    """現在の永続化状態を取得する."""
    router: MessageRouter | None = STATE["router"]
    if router is None:
        raise HTTPException(status_code=503, detail="Policy service not ready")
    return await router.handle({"type": MessageType.GET_SNAPSHOT.value})


# --- モニタリング用エンドポイント ---


@app.get("/api/monitoring_data")
async def get_monitoring_data() -> dict[str, Any]:
    """モニタリング用に最新データを提供する."""
    return {
        "last_decision": STATE["last_decision"],
        "logs": list(STATE["logs"]),
    }
