# src/core/fanout/router.py
"""
Маршрутизатор рассылки обновлений по топикам.

Топики:
- bus:{bus_number}: конкретный автобус
- route:{route_id}: все автобусы маршрута
- all: весь парк

У каждого соединения своя ограниченная очередь и своя задача-отправитель,
поэтому медленный клиент не задерживает остальных. Таблица подписок
защищена шардированными блокировками: разные топики не конкурируют
за одну блокировку.
"""

from __future__ import annotations

import asyncio
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol
from uuid import uuid4

from src.common.constants import OverflowPolicy
from src.common.logger import log_debug, log_info, log_warning
from src.core.tracking.errors import BroadcastError

LOCATION_UPDATE_EVENT = "location-update"

# Коды закрытия WebSocket
CLOSE_GOING_AWAY = 1001
CLOSE_TRY_AGAIN_LATER = 1013


class MessageSocket(Protocol):
    """То, что нужно маршрутизатору от WebSocket."""

    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


@dataclass
class Connection:
    """Зарегистрированное соединение подписчика."""
    id: str
    websocket: MessageSocket
    queue: asyncio.Queue
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    topics: set[str] = field(default_factory=set)
    sender: Optional[asyncio.Task] = None
    closed: bool = False
    sent: int = 0
    dropped: int = 0


class FanoutRouter:
    """
    Рассылка сообщений подписчикам топиков.

    Доставка best-effort: без подтверждений, повторов и порядка между топиками.
    Ошибка отправки закрывает только то соединение, где она произошла.
    """

    def __init__(
        self,
        queue_max_size: int = 100,
        overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
        lock_shards: int = 16,
        send_timeout: float = 10.0,
    ) -> None:
        self._queue_max_size = queue_max_size
        self._overflow_policy = OverflowPolicy(overflow_policy)
        self._send_timeout = send_timeout

        # connection_id -> Connection
        self._connections: dict[str, Connection] = {}
        # topic -> set of connection_ids
        self._topics: dict[str, set[str]] = {}
        self._locks = [asyncio.Lock() for _ in range(max(1, lock_shards))]

        # Для статистики
        self._total_connections = 0
        self._published = 0
        self._enqueued = 0
        self._sent = 0
        self._dropped = 0
        self._send_failures = 0
        self._overflow_closes = 0

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    def _lock_for(self, topic: str) -> asyncio.Lock:
        return self._locks[zlib.crc32(topic.encode("utf-8")) % len(self._locks)]

    # =========================================================================
    # СОЕДИНЕНИЯ
    # =========================================================================

    async def connect(self, websocket: MessageSocket) -> Connection:
        """
        Регистрирует соединение (уже принятое) и запускает его отправитель.
        """
        conn = Connection(
            id=str(uuid4()),
            websocket=websocket,
            queue=asyncio.Queue(maxsize=self._queue_max_size),
        )
        self._connections[conn.id] = conn
        conn.sender = asyncio.create_task(self._sender_loop(conn), name=f"fanout-sender-{conn.id}")
        self._total_connections += 1

        await log_debug(f"Подписчик подключён: {conn.id}")
        return conn

    async def disconnect(
        self,
        connection_id: str,
        close_code: Optional[int] = None,
    ) -> bool:
        """
        Снимает соединение со всех топиков и останавливает отправитель.
        После возврата соединению ничего не доставляется.

        Args:
            connection_id: ID соединения
            close_code: Если задан, сокет закрывается с этим кодом
        """
        conn = self._connections.pop(connection_id, None)
        if conn is None:
            return False

        conn.closed = True
        for topic in list(conn.topics):
            async with self._lock_for(topic):
                self._remove_member(topic, connection_id)
        conn.topics.clear()

        sender = conn.sender
        if sender is not None and sender is not asyncio.current_task() and not sender.done():
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass

        if close_code is not None:
            await self._close_socket(conn, close_code)

        await log_debug(f"Подписчик отключён: {connection_id}")
        return True

    async def close_all(self) -> None:
        """Отключает всех подписчиков (остановка сервиса)."""
        for connection_id in list(self._connections):
            await self.disconnect(connection_id, close_code=CLOSE_GOING_AWAY)

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    # =========================================================================
    # ПОДПИСКИ
    # =========================================================================

    async def subscribe(self, connection_id: str, topic: str) -> bool:
        """
        Подписывает соединение на топик. Повторная подписка ничего не меняет.

        Returns:
            False если соединение не зарегистрировано
        """
        conn = self._connections.get(connection_id)
        if conn is None:
            return False

        async with self._lock_for(topic):
            if conn.closed:
                return False
            self._topics.setdefault(topic, set()).add(connection_id)
            conn.topics.add(topic)
        return True

    async def unsubscribe(self, connection_id: str, topic: str) -> bool:
        """
        Отписывает соединение от топика.

        Returns:
            True если подписка существовала
        """
        conn = self._connections.get(connection_id)
        if conn is None:
            return False

        async with self._lock_for(topic):
            existed = topic in conn.topics
            conn.topics.discard(topic)
            self._remove_member(topic, connection_id)
        return existed

    def _remove_member(self, topic: str, connection_id: str) -> None:
        members = self._topics.get(topic)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._topics[topic]

    def get_topic_subscribers(self, topic: str) -> set[str]:
        return set(self._topics.get(topic, ()))

    def get_connection_topics(self, connection_id: str) -> set[str]:
        conn = self._connections.get(connection_id)
        return set(conn.topics) if conn else set()

    # =========================================================================
    # РАССЫЛКА
    # =========================================================================

    async def publish(
        self,
        topic: str,
        payload: dict[str, Any],
        event: str = LOCATION_UPDATE_EVENT,
    ) -> int:
        """
        Ставит сообщение в очереди всех подписчиков топика.
        Не ждёт отправки.

        Returns:
            Количество соединений, получивших сообщение в очередь
        """
        self._published += 1
        async with self._lock_for(topic):
            members = tuple(self._topics.get(topic, ()))

        if not members:
            return 0

        message = {"event": event, "data": payload}
        enqueued = 0
        overflowed: list[str] = []

        for connection_id in members:
            conn = self._connections.get(connection_id)
            if conn is None or conn.closed:
                continue
            if self._enqueue(conn, message):
                enqueued += 1
            else:
                overflowed.append(connection_id)

        for connection_id in overflowed:
            self._overflow_closes += 1
            await log_warning(
                f"Очередь подписчика {connection_id} переполнена, соединение закрыто",
                extra={"topic": topic},
            )
            await self.disconnect(connection_id, close_code=CLOSE_TRY_AGAIN_LATER)

        return enqueued

    async def send(self, connection_id: str, message: dict[str, Any]) -> bool:
        """
        Ставит служебное сообщение (ack, pong, error) в очередь одного соединения.
        Все записи в сокет идут через его отправителя.
        """
        conn = self._connections.get(connection_id)
        if conn is None or conn.closed:
            return False
        if self._enqueue(conn, message):
            return True

        self._overflow_closes += 1
        await self.disconnect(connection_id, close_code=CLOSE_TRY_AGAIN_LATER)
        return False

    def _enqueue(self, conn: Connection, message: dict[str, Any]) -> bool:
        """
        Кладёт сообщение в очередь соединения по политике переполнения.

        Returns:
            False если очередь полна и политика требует закрыть соединение
        """
        if conn.queue.full():
            if self._overflow_policy == OverflowPolicy.CLOSE:
                return False
            conn.queue.get_nowait()
            conn.dropped += 1
            self._dropped += 1

        conn.queue.put_nowait(message)
        self._enqueued += 1
        return True

    async def _sender_loop(self, conn: Connection) -> None:
        """Отправитель соединения: разбирает очередь по одному сообщению."""
        while not conn.closed:
            message = await conn.queue.get()
            if conn.closed:
                return
            try:
                await self._deliver(conn, message)
            except BroadcastError as e:
                self._send_failures += 1
                await log_warning(e.message, extra={"connection_id": conn.id})
                await self.disconnect(conn.id, close_code=CLOSE_GOING_AWAY)
                return

    async def _deliver(self, conn: Connection, message: dict[str, Any]) -> None:
        try:
            await asyncio.wait_for(conn.websocket.send_json(message), timeout=self._send_timeout)
        except asyncio.TimeoutError as e:
            raise BroadcastError(conn.id, f"send timed out after {self._send_timeout}s") from e
        except Exception as e:
            raise BroadcastError(conn.id, repr(e)) from e

        conn.sent += 1
        self._sent += 1

    async def _close_socket(self, conn: Connection, code: int) -> None:
        """Закрывает сокет. Уже закрытый сокет не считается ошибкой."""
        try:
            await conn.websocket.close(code=code)
        except Exception as e:
            await log_debug(f"Сокет {conn.id} уже закрыт: {e!r}")

    # =========================================================================
    # СТАТИСТИКА
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        """Получить статистику."""
        return {
            "active_connections": len(self._connections),
            "total_topics": len(self._topics),
            "total_subscriptions": sum(len(m) for m in self._topics.values()),
            "total_connections_ever": self._total_connections,
            "messages_published": self._published,
            "messages_enqueued": self._enqueued,
            "messages_sent": self._sent,
            "messages_dropped": self._dropped,
            "send_failures": self._send_failures,
            "overflow_closes": self._overflow_closes,
            "overflow_policy": self._overflow_policy.value,
            "queue_max_size": self._queue_max_size,
        }

    async def log_stats(self) -> None:
        stats = self.get_stats()
        await log_info(
            f"Fan-out: {stats['active_connections']} соединений, {stats['total_topics']} топиков",
            extra=stats,
        )
