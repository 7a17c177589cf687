"""
日志配置 - 只配置 peakanalyzer 自身的 logger 层级
"""

import logging
import os
from typing import Optional, Union

LOG_LEVEL_ENV = "PEAKANALYZER_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_handler: Optional[logging.Handler] = None


def setup_logging(level: Optional[Union[int, str]] = None) -> logging.Logger:
    """
    配置包级日志输出，重复调用只更新级别

    参数:
    - level: 日志级别，为None时读取环境变量 PEAKANALYZER_LOG_LEVEL（默认WARNING）
    """
    global _handler

    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV, "WARNING")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING

    root = logging.getLogger("peakanalyzer")
    if _handler is None:
        _handler = logging.StreamHandler()
        _handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(_handler)

    root.setLevel(level)
    return root
