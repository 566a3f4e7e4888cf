# src/services/tracking/__init__.py
"""
Tracking Service: HTTP API приёма и выборок позиций, WebSocket рассылка.
"""
