# src/core/fanout/redis_bridge.py
"""
Ретрансляция рассылки между инстансами через Redis Pub/Sub.

Каждый инстанс публикует обновления в общий канал с меткой origin
и доставляет локальным подписчикам только чужие сообщения:
свои уже разосланы напрямую.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional
from uuid import uuid4

from redis.exceptions import RedisError

from src.common.logger import log_error, log_info, log_warning
from src.common.constants import TypeMsg
from src.core.fanout.router import LOCATION_UPDATE_EVENT, FanoutRouter
from src.infra.redis_client import RedisClient


class RedisFanoutBridge:
    """
    Публикатор, совместимый с FanoutRouter.publish:
    рассылает локально и ретранслирует в Redis.
    """

    def __init__(
        self,
        router: FanoutRouter,
        redis: RedisClient,
        channel: str,
        instance_id: Optional[str] = None,
    ) -> None:
        self._router = router
        self._redis = redis
        self._topic_channel = channel
        self._channel = redis.make_key(channel)
        self.instance_id = instance_id or uuid4().hex
        self._pubsub = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

        self._relayed_out = 0
        self._relayed_in = 0
        self._relay_errors = 0

    async def publish(
        self,
        topic: str,
        payload: dict[str, Any],
        event: str = LOCATION_UPDATE_EVENT,
    ) -> int:
        """
        Рассылает локально и публикует в Redis.
        Ошибка Redis логируется и не влияет на локальную доставку.
        """
        delivered = await self._router.publish(topic, payload, event=event)
        envelope = {
            "origin": self.instance_id,
            "topic": topic,
            "event": event,
            "payload": payload,
        }
        try:
            await self._redis.publish_json(self._topic_channel, envelope)
            self._relayed_out += 1
        except (RedisError, OSError) as e:
            self._relay_errors += 1
            await log_error(f"Не удалось ретранслировать {topic} в Redis: {e}")
        return delivered

    async def start(self) -> None:
        """Подписывается на канал и запускает приём сообщений."""
        if self._running:
            return

        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(self._channel)
        self._running = True
        self._task = asyncio.create_task(self._listen(), name="fanout-redis-bridge")
        await log_info(f"Redis-ретрансляция запущена: {self._channel}", type_msg=TypeMsg.INFO)

    async def stop(self) -> None:
        """Останавливает приём и закрывает PubSub."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._pubsub:
            await self._pubsub.unsubscribe()
            await self._pubsub.aclose()
            self._pubsub = None

    async def _listen(self) -> None:
        """Слушать сообщения из Redis."""
        while self._running:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
                if message is None:
                    continue
                await self.handle_message(message)
            except (RedisError, OSError) as e:
                self._relay_errors += 1
                await log_warning(f"Ошибка подписки Redis: {e}")
                await asyncio.sleep(1)

    async def handle_message(self, message: dict[str, Any]) -> int:
        """
        Доставляет чужое сообщение локальным подписчикам.

        Returns:
            Количество соединений, получивших сообщение
        """
        if message.get("type") != "message":
            return 0

        data = message.get("data", "")
        if isinstance(data, bytes):
            data = data.decode("utf-8")

        try:
            envelope = json.loads(data)
        except json.JSONDecodeError:
            await log_warning(f"Некорректное сообщение в канале {self._channel}: {data[:200]}")
            return 0

        if not isinstance(envelope, dict) or envelope.get("origin") == self.instance_id:
            return 0

        topic = envelope.get("topic")
        payload = envelope.get("payload")
        if not isinstance(topic, str) or not isinstance(payload, dict):
            return 0

        self._relayed_in += 1
        return await self._router.publish(
            topic,
            payload,
            event=envelope.get("event") or LOCATION_UPDATE_EVENT,
        )

    def get_stats(self) -> dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "channel": self._channel,
            "relayed_out": self._relayed_out,
            "relayed_in": self._relayed_in,
            "relay_errors": self._relay_errors,
        }
