"""Runtime configuration read from the environment (and ``.env.local``)."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

REPO_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_SERVER_URL = "http://localhost:3000"
TRUTHY = {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        msg = f"{name} must be a number, got {raw!r}"
        raise ValueError(msg) from None


def _env_flag(name: str, *, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in TRUTHY


@dataclass(frozen=True)
class Settings:
    """サービス全体の設定."""

    server_url: str = DEFAULT_SERVER_URL
    classify_timeout: float = 5.0
    sync_timeout: float = 5.0
    sync_debounce_seconds: float = 30.0
    sync_interval_seconds: float = 300.0
    state_file: str | None = None
    allowance_layer: bool = False
    log_file: str | None = None


def load_settings(env_file: Path | None = None) -> Settings:
    """環境変数から設定を読み込む.

    ``.env.local`` が存在すればそれを先に読み込む（既存の環境変数は上書きしない）。
    """
    env_path = env_file or REPO_ROOT / ".env.local"
    if env_path.exists():
        load_dotenv(dotenv_path=env_path, override=False)

    return Settings(
        server_url=(os.getenv("FOCUSTUBE_SERVER_URL") or DEFAULT_SERVER_URL).rstrip(
            "/"
        ),
        classify_timeout=_env_float("FOCUSTUBE_CLASSIFY_TIMEOUT", 5.0),
        sync_timeout=_env_float("FOCUSTUBE_SYNC_TIMEOUT", 5.0),
        sync_debounce_seconds=_env_float("FOCUSTUBE_SYNC_DEBOUNCE", 30.0),
        sync_interval_seconds=_env_float("FOCUSTUBE_SYNC_INTERVAL", 300.0),
        state_file=os.getenv("FOCUSTUBE_STATE_FILE") or None,
        allowance_layer=_env_flag("FOCUSTUBE_ALLOWANCE_LAYER"),
        log_file=os.getenv("FOCUSTUBE_LOG_FILE") or None,
    )
