# src/shared/__init__.py
"""
Общий код сервисов.

Модули:
- models: модели ответов HTTP API
"""

__all__: list[str] = []
