#!/usr/bin/env python3
import contextlib
import os
from pathlib import Path

import psutil
from utils import API_PID_FILE, REPO_ROOT, logger


def stop_by_pid_file(path: Path) -> None:
    if not path.exists():
        logger.info("PIDファイルがありません")
        return
    pid = int(path.read_text(encoding="ascii"))
    try:
        proc = psutil.Process(pid)
        proc.terminate()
        proc.wait(timeout=10)
    except psutil.NoSuchProcess:
        logger.info("すでに停止済みです")
    except psutil.TimeoutExpired:
        logger.warning(f"PID {pid} did not exit; killing")
        proc.kill()
    with contextlib.suppress(OSError):
        path.unlink(missing_ok=True)


def main() -> int:
    os.chdir(REPO_ROOT)
    logger.info("============== FocusTube 停止中 ================")
    stop_by_pid_file(API_PID_FILE)
    logger.info("Policy service 停止しました")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
