# src/core/security/__init__.py
"""
Защита от повторной отправки запросов.
"""

from src.core.security.replay_guard import ReplayGuard, make_request_id

__all__ = ["ReplayGuard", "make_request_id"]
