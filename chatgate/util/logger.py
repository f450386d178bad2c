"""Process-wide `chatgate` logger: stderr always, rotating file when the log dir is writable."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from chatgate.config.settings import settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_NAME = "chatgate.log"
MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 5


def _resolve_level(raw: str) -> int:
    # "warn" 等别名交给 logging 自己识别，未知值回落到 INFO
    level = logging.getLevelName(str(raw or "").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _file_handler(log_dir: str) -> logging.Handler | None:
    if not log_dir.strip():
        return None
    directory = Path(log_dir)
    try:
        directory.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(
            directory / LOG_FILE_NAME,
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError:
        # 只读容器里只写 stderr
        return None


def _build_logger() -> logging.Logger:
    root = logging.getLogger("chatgate")
    if root.handlers:
        return root

    level = _resolve_level(settings.log_level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    file_handler = _file_handler(settings.log_dir)
    if file_handler is not None:
        handlers.append(file_handler)

    root.setLevel(level)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.propagate = False
    return root


logger = _build_logger()


def get_logger(name: str) -> logging.Logger:
    return logger.getChild(name)
