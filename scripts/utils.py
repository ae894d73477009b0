#!/usr/bin/env python3
from __future__ import annotations

import logging
from pathlib import Path
from typing import cast

import requests
from dotenv import load_dotenv

# start / stop スクリプト共通のパスとヘルパー
REPO_ROOT = Path(__file__).resolve().parent.parent
LOG_DIR = REPO_ROOT / "log"
API_PID_FILE = REPO_ROOT / "policy_service.pid"

API_HOST = "127.0.0.1"
API_PORT = 5577
HTTP_OK_MIN = 200
HTTP_OK_MAX = 400

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger("focustube.scripts")


def http_ok(url: str, timeout: float = 2.5) -> bool:
    if not url.lower().startswith(("http://", "https://")):
        return False
    try:
        resp = requests.get(url, timeout=timeout)
    except requests.RequestException:
        return False
    else:
        status = cast("int", getattr(resp, "status_code", 0))
        return HTTP_OK_MIN <= status < HTTP_OK_MAX


def load_local_env() -> bool:
    """``.env.local`` があれば読み込む（既存の環境変数を優先）."""
    env_path = REPO_ROOT / ".env.local"
    if not env_path.exists():
        return False
    load_dotenv(dotenv_path=env_path, override=False)
    return True
