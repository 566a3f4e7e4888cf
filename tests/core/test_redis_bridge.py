# tests/core/test_redis_bridge.py
"""
Тесты ретрансляции рассылки через Redis.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from src.core.fanout.redis_bridge import RedisFanoutBridge
from src.core.fanout.router import FanoutRouter


@pytest.fixture
def router() -> AsyncMock:
    router = AsyncMock(spec=FanoutRouter)
    router.publish.return_value = 2
    return router


def redis_message(envelope) -> dict:
    return {"type": "message", "channel": "bus_test:fanout", "data": json.dumps(envelope)}


class TestRedisFanoutBridge:
    """Тесты RedisFanoutBridge."""

    @pytest.mark.asyncio
    async def test_publish_local_and_relay(self, router, mock_redis) -> None:
        bridge = RedisFanoutBridge(router, mock_redis, "fanout", instance_id="node-a")

        delivered = await bridge.publish("bus:NB-1001", {"n": 1})

        assert delivered == 2
        router.publish.assert_awaited_once_with("bus:NB-1001", {"n": 1}, event="location-update")
        channel, envelope = mock_redis.publish_json.call_args.args
        assert channel == "fanout"
        assert envelope == {
            "origin": "node-a",
            "topic": "bus:NB-1001",
            "event": "location-update",
            "payload": {"n": 1},
        }

    @pytest.mark.asyncio
    async def test_relay_failure_keeps_local_delivery(self, router, mock_redis) -> None:
        mock_redis.publish_json.side_effect = RedisConnectionError("down")
        bridge = RedisFanoutBridge(router, mock_redis, "fanout")

        assert await bridge.publish("all", {"n": 1}) == 2
        assert bridge.get_stats()["relay_errors"] == 1

    @pytest.mark.asyncio
    async def test_foreign_message_delivered(self, router, mock_redis) -> None:
        bridge = RedisFanoutBridge(router, mock_redis, "fanout", instance_id="node-a")

        delivered = await bridge.handle_message(redis_message({
            "origin": "node-b",
            "topic": "route:R001",
            "event": "location-update",
            "payload": {"n": 1},
        }))

        assert delivered == 2
        router.publish.assert_awaited_once_with("route:R001", {"n": 1}, event="location-update")

    @pytest.mark.asyncio
    async def test_own_message_skipped(self, router, mock_redis) -> None:
        """Свои сообщения уже разосланы локально."""
        bridge = RedisFanoutBridge(router, mock_redis, "fanout", instance_id="node-a")

        delivered = await bridge.handle_message(redis_message({
            "origin": "node-a",
            "topic": "all",
            "payload": {"n": 1},
        }))

        assert delivered == 0
        router.publish.assert_not_awaited()

    @pytest.mark.parametrize("message", [
        {"type": "subscribe", "data": 1},
        {"type": "message", "data": "not json"},
        {"type": "message", "data": json.dumps(["list"])},
        {"type": "message", "data": json.dumps({"origin": "node-b", "topic": 5, "payload": {}})},
        {"type": "message", "data": json.dumps({"origin": "node-b", "topic": "all", "payload": "x"})},
    ])
    @pytest.mark.asyncio
    async def test_malformed_messages_ignored(self, router, mock_redis, message) -> None:
        bridge = RedisFanoutBridge(router, mock_redis, "fanout", instance_id="node-a")

        assert await bridge.handle_message(message) == 0
        router.publish.assert_not_awaited()

    def test_channel_has_namespace(self, router, mock_redis) -> None:
        bridge = RedisFanoutBridge(router, mock_redis, "fanout")

        assert bridge.get_stats()["channel"] == "bus_test:fanout"
