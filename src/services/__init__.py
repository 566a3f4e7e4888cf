# src/services/__init__.py
"""
Сервисы приложения.

- tracking: HTTP API приёма и выборок позиций + WebSocket рассылка
"""

__all__: list[str] = []
