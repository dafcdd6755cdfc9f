# src/common/__init__.py
"""
Общие утилиты: логгер, константы, доменные ошибки.
"""

from src.common.logger import get_logger, setup_logging, log_info, log_error, log_warning, log_debug
from src.common.constants import TypeMsg
from src.common.exceptions import StoreError

__all__ = [
    "get_logger",
    "setup_logging",
    "log_info",
    "log_error",
    "log_warning",
    "log_debug",
    "TypeMsg",
    "StoreError",
]
