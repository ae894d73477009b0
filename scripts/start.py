#!/usr/bin/env python3
"""FocusTube policy service launcher (Windows/macOS/Linux)"""

from __future__ import annotations

import os
import platform
import subprocess
import sys
import time
from typing import TYPE_CHECKING

from utils import (
    API_HOST,
    API_PID_FILE,
    API_PORT,
    LOG_DIR,
    REPO_ROOT,
    http_ok,
    load_local_env,
    logger,
)

if TYPE_CHECKING:
    from pathlib import Path

CREATE_NEW_PROCESS_GROUP = 0x00000200
DETACHED_PROCESS = 0x00000008


def wait_http(url: str, attempts: int = 30, interval: float = 1.0) -> bool:
    for _ in range(attempts):
        if http_ok(url):
            return True
        time.sleep(interval)
        sys.stdout.write(".")
        sys.stdout.flush()
    sys.stdout.write("\n")
    return http_ok(url)


def background_popen(
    cmd: list[str], stdout_path: Path, stderr_path: Path, env: dict[str, str]
) -> subprocess.Popen:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    with stdout_path.open("ab", buffering=0) as stdout_f, stderr_path.open(
        "ab", buffering=0
    ) as stderr_f:
        creationflags = 0
        start_new_session = False
        if platform.system() == "Windows":
            creationflags = CREATE_NEW_PROCESS_GROUP | DETACHED_PROCESS
        else:
            start_new_session = True

        return subprocess.Popen(  # noqa: S603
            cmd,
            cwd=str(REPO_ROOT),
            stdout=stdout_f,
            stderr=stderr_f,
            env=env,
            creationflags=creationflags,
            start_new_session=start_new_session,
        )


def start_api(env: dict[str, str]) -> int:
    logger.info("Starting policy service (uvicorn)...")
    proc = background_popen(
        [
            sys.executable,
            "-m",
            "uvicorn",
            "src.api.main:app",
            "--port",
            str(API_PORT),
            "--host",
            API_HOST,
        ],
        stdout_path=LOG_DIR / "api.log",
        stderr_path=LOG_DIR / "api.err.log",
        env=env,
    )
    API_PID_FILE.write_text(str(proc.pid), encoding="ascii")
    sys.stdout.write("   Waiting for server to respond...\n")
    if wait_http(f"http://{API_HOST}:{API_PORT}/status", attempts=30):
        logger.info(f"Policy service up (PID {proc.pid})")
    else:
        logger.warning("Policy service did not respond in time. Check logs under ./log/")
    return proc.pid


def main() -> int:
    os.chdir(REPO_ROOT)
    logger.info("============== FocusTube 起動中 ================")

    if load_local_env():
        logger.info("Loaded .env.local")

    child_env = os.environ.copy()
    child_env["PYTHONPATH"] = str(REPO_ROOT)

    api_pid = start_api(child_env)
    server_url = os.environ.get("FOCUSTUBE_SERVER_URL", "http://localhost:3000")

    sys.stdout.write("\n")
    sys.stdout.write(f"  - Policy service: http://{API_HOST}:{API_PORT}  (PID: {api_pid})\n")
    sys.stdout.write(f"  - Remote server:  {server_url}\n")
    sys.stdout.write("Logs: ./log/api.log\n")
    sys.stdout.write("Stop: python scripts/stop.py\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
