# src/services/tracking/ws.py
"""
WebSocket подписки на обновления позиций.

Входящие сообщения:
- {"action": "subscribe-bus", "busNumber": "NB-1001"}
- {"action": "subscribe-all-buses"}
- {"action": "subscribe-route", "routeId": "R001"}
- {"action": "unsubscribe", "topic": "bus:NB-1001"}
- {"action": "ping"}

Исходящие:
- {"event": "location-update", "data": {...}}
- {"event": "subscribed" | "unsubscribed", "topic": ...}
- {"event": "pong"}
- {"event": "error", "message": ...}
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from src.common.constants import TOPIC_ALL, TOPIC_BUS_PREFIX, TOPIC_ROUTE_PREFIX, bus_topic, route_topic
from src.core.fanout.router import FanoutRouter
from src.services.tracking.dependencies import get_fanout_router

router = APIRouter()


def normalize_topic(topic: str) -> str | None:
    """
    Приводит топик к виду, в котором его публикует приём:
    номер автобуса в верхнем регистре, без пробелов по краям.
    None для неизвестного топика.
    """
    if topic == TOPIC_ALL:
        return TOPIC_ALL
    if topic.startswith(TOPIC_BUS_PREFIX):
        bus_number = topic[len(TOPIC_BUS_PREFIX):].strip()
        return bus_topic(bus_number.upper()) if bus_number else None
    if topic.startswith(TOPIC_ROUTE_PREFIX):
        route_id = topic[len(TOPIC_ROUTE_PREFIX):].strip()
        return route_topic(route_id) if route_id else None
    return None


def _text_field(data: dict[str, Any], name: str) -> str | None:
    value = data.get(name)
    if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value).strip():
        return str(value).strip()
    return None


def resolve_subscription(data: dict[str, Any]) -> tuple[str | None, str | None]:
    """
    Определяет топик для subscribe-сообщения.

    Returns:
        (topic, None) или (None, текст ошибки)
    """
    action = data.get("action")

    if action == "subscribe-all-buses":
        return TOPIC_ALL, None

    if action == "subscribe-bus":
        bus_number = _text_field(data, "busNumber")
        if bus_number is None:
            return None, "busNumber is required"
        return bus_topic(bus_number.upper()), None

    if action == "subscribe-route":
        route_id = _text_field(data, "routeId")
        if route_id is None:
            return None, "routeId is required"
        return route_topic(route_id), None

    return None, f"Unknown action: {action}"


async def handle_client_message(fanout: FanoutRouter, connection_id: str, data: Any) -> None:
    """Обработать сообщение от клиента."""
    if not isinstance(data, dict):
        await fanout.send(connection_id, {"event": "error", "message": "Message must be a JSON object"})
        return

    action = data.get("action")

    if action == "ping":
        await fanout.send(connection_id, {"event": "pong"})

    elif action == "unsubscribe":
        topic = _text_field(data, "topic")
        if topic is None:
            await fanout.send(connection_id, {"event": "error", "message": "topic is required"})
            return
        topic = normalize_topic(topic) or topic
        await fanout.unsubscribe(connection_id, topic)
        await fanout.send(connection_id, {"event": "unsubscribed", "topic": topic})

    elif action == "subscribe":
        raw_topic = _text_field(data, "topic")
        topic = normalize_topic(raw_topic) if raw_topic else None
        if topic is None:
            await fanout.send(connection_id, {"event": "error", "message": f"Invalid topic: {raw_topic}"})
            return
        await fanout.subscribe(connection_id, topic)
        await fanout.send(connection_id, {"event": "subscribed", "topic": topic})

    else:
        topic, error = resolve_subscription(data)
        if topic is None:
            await fanout.send(connection_id, {"event": "error", "message": error})
            return
        await fanout.subscribe(connection_id, topic)
        await fanout.send(connection_id, {"event": "subscribed", "topic": topic})


@router.websocket("/ws/locations")
async def locations_socket(websocket: WebSocket) -> None:
    """Поток обновлений позиций по подпискам клиента."""
    fanout = await get_fanout_router()
    await websocket.accept()
    conn = await fanout.connect(websocket)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            # Текстовый или бинарный кадр, бинарный как UTF-8 JSON
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            try:
                data = json.loads(raw)
            except ValueError:
                await fanout.send(conn.id, {"event": "error", "message": "Invalid JSON"})
                continue
            await handle_client_message(fanout, conn.id, data)

    except WebSocketDisconnect:
        pass
    except RuntimeError:
        # Сокет уже закрыт маршрутизатором (переполнение очереди, ошибка отправки)
        if fanout.get_connection(conn.id) is not None:
            raise
    finally:
        await fanout.disconnect(conn.id)
