# src/core/fanout/__init__.py
"""
Рассылка обновлений подписчикам по топикам.
"""

from src.core.fanout.router import Connection, FanoutRouter

__all__ = [
    "Connection",
    "FanoutRouter",
]
