"""日志配置：整个进程只初始化一次。"""

from __future__ import annotations

import logging
import sys
from typing import Optional

_LOGGER_INITIALIZED = False

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=(level or "INFO").upper(),
        format=LOG_FORMAT,
        handlers=handlers,
    )
    # APScheduler 每秒一次的任务日志太吵
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
