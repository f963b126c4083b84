"""
prepropipe.log
基于 loguru 的日志配置：控制台输出，可选文件输出。
日志级别可通过 PREPROPIPE_LOG_LEVEL 环境变量覆盖。
导入本模块不会修改 loguru 的全局状态，只有 configure_logging() 会。
"""
from __future__ import annotations

import os
import sys
from typing import Optional

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} {level} [{extra[component]}] {message}"


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    level = (os.getenv("PREPROPIPE_LOG_LEVEL") or level or "INFO").upper()
    # records logged without bind() still render with the format above
    logger.configure(extra={"component": "prepropipe"})
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)
    if log_file:
        logger.add(log_file, level=level, format=LOG_FORMAT, encoding="utf-8")


def get_logger(component: str):
    return logger.bind(component=component)
