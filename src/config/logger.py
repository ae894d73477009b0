import logging
from pathlib import Path

__all__ = ["configure_file_logging", "logger"]

_formatter = logging.Formatter(
    fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger("focustube")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    _sh = logging.StreamHandler()
    _sh.setFormatter(_formatter)
    logger.addHandler(_sh)


def configure_file_logging(log_file: str | None) -> logging.FileHandler | None:
    """設定されたログファイルにも出力する（同じファイルへの重複追加はしない）."""
    if not log_file:
        return None
    path = Path(log_file).resolve()
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == path:
            return handler
    path.parent.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(path, encoding="utf-8")
    fh.setFormatter(_formatter)
    logger.addHandler(fh)
    return fh
