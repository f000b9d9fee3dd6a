"""MemoryBrokerGateway 与 topic 匹配测试"""

import asyncio

import pytest
from chatrelay.broker import MemoryBrokerGateway, topic_matches
from chatrelay.core.exceptions import DeliveryFailure, ResourceError


class TestTopicMatches:
    @pytest.mark.parametrize(
        "pattern,key,expected",
        [
            ("chat.channel.c1", "chat.channel.c1", True),
            ("chat.channel.c1", "chat.channel.c2", False),
            ("chat.channel.*", "chat.channel.c1", True),
            ("chat.*", "chat.channel.c1", False),
            ("chat.#", "chat.channel.c1", True),
            ("#", "chat.channel.c1", True),
            ("chat.#.c1", "chat.c1", True),
        ],
    )
    def test_matching(self, pattern, key, expected):
        assert topic_matches(pattern, key) is expected


class TestMemoryBrokerGateway:
    async def test_publish_routes_to_bound_queue(self, broker: MemoryBrokerGateway):
        await broker.declare_queue("chat.channel.c1")
        await broker.bind("chat.channel.c1", "chat.exchange", "chat.channel.c1")
        sub = await broker.subscribe("chat.channel.c1")

        await broker.publish("chat.exchange", "chat.channel.c1", b"payload")
        await broker.publish("chat.exchange", "chat.channel.c2", b"other")

        body = await asyncio.wait_for(sub.__anext__(), timeout=1)
        assert body == b"payload"
        assert len(broker.published) == 2

    async def test_declare_is_idempotent(self, broker: MemoryBrokerGateway):
        await broker.declare_queue("q")
        await broker.declare_queue("q")
        assert broker.has_queue("q")
        assert broker.declare_calls == 2

    async def test_bind_missing_queue_raises(self, broker: MemoryBrokerGateway):
        with pytest.raises(ResourceError):
            await broker.bind("missing", "chat.exchange", "chat.channel.x")

    async def test_subscribe_missing_queue_raises(self, broker: MemoryBrokerGateway):
        with pytest.raises(ResourceError):
            await broker.subscribe("missing")

    async def test_delete_queue_removes_bindings_and_closes_subscriptions(
        self, broker: MemoryBrokerGateway
    ):
        await broker.declare_queue("chat.channel.c1")
        await broker.bind("chat.channel.c1", "chat.exchange", "chat.channel.c1")
        sub = await broker.subscribe("chat.channel.c1")

        await broker.delete_queue("chat.channel.c1")

        assert not broker.has_queue("chat.channel.c1")
        assert broker.bindings_for("chat.channel.c1") == []
        assert sub.closed
        with pytest.raises(StopAsyncIteration):
            await sub.__anext__()

    async def test_close_unblocks_waiting_consumer(self, broker: MemoryBrokerGateway):
        await broker.declare_queue("q")
        sub = await broker.subscribe("q")

        async def consume():
            return [body async for body in sub]

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        await sub.close()
        assert await asyncio.wait_for(task, timeout=1) == []

    async def test_closed_broker_rejects_operations(self, broker: MemoryBrokerGateway):
        await broker.close()
        assert await broker.ping() is False
        with pytest.raises(DeliveryFailure):
            await broker.publish("chat.exchange", "chat.channel.c1", b"x")
        with pytest.raises(ResourceError):
            await broker.declare_queue("q")
