"""SSE 频道订阅路由测试 -- 直接驱动事件生成器"""

import asyncio
import json
from unittest.mock import MagicMock

import pytest
from chatrelay.gateway.routes.stream import stream_channel
from chatrelay.gateway.services.fanout import SubscriberHub


def _request(exchange: str = "chat.exchange") -> MagicMock:
    request = MagicMock()
    request.app.state.broker_config.exchange = exchange
    return request


async def _first_event(response, hub: SubscriberHub, destination: str, publish):
    events = response.body_iterator
    pending = asyncio.create_task(events.__anext__())
    while hub.subscriber_count(destination) == 0:
        await asyncio.sleep(0.01)
    await publish()
    event = await asyncio.wait_for(pending, timeout=1)
    await events.aclose()
    return event


class TestStreamChannel:
    async def test_streams_topic_payloads(self, hub: SubscriberHub):
        response = await stream_channel("c1", _request(), source="topic", hub=hub)
        destination = "/topic/chat.channel.c1"

        event = await _first_event(
            response,
            hub,
            destination,
            lambda: hub.publish_to_topic("c1", {"chatId": "m1", "content": "hi"}),
        )

        assert event["event"] == "message"
        assert json.loads(event["data"]) == {"chatId": "m1", "content": "hi"}
        assert hub.subscriber_count(destination) == 0

    async def test_command_responses_use_response_event(self, hub: SubscriberHub):
        response = await stream_channel("c1", _request(), source="topic", hub=hub)

        event = await _first_event(
            response,
            hub,
            "/topic/chat.channel.c1",
            lambda: hub.publish_to_topic("c1", {"status": "error", "message": "Permission denied"}),
        )

        assert event["event"] == "response"

    async def test_exchange_source(self, hub: SubscriberHub):
        response = await stream_channel("c1", _request(), source="exchange", hub=hub)

        event = await _first_event(
            response,
            hub,
            "/exchange/chat.exchange/chat.channel.c1",
            lambda: hub.publish_to_exchange("c1", {"chatId": "m2"}),
        )

        assert json.loads(event["data"]) == {"chatId": "m2"}

    async def test_stream_ends_when_subscriber_dropped(self):
        hub = SubscriberHub(exchange="chat.exchange", queue_maxsize=1)
        response = await stream_channel("c1", _request(), source="topic", hub=hub)
        destination = "/topic/chat.channel.c1"
        events = response.body_iterator

        pending = asyncio.create_task(events.__anext__())
        while hub.subscriber_count(destination) == 0:
            await asyncio.sleep(0.01)
        await hub.publish_to_topic("c1", {"n": 1})
        first = await asyncio.wait_for(pending, timeout=1)
        assert first["event"] == "message"

        # 生成器挂起在 yield 处，不读取队列：第二条填满，第三条触发移除
        await hub.publish_to_topic("c1", {"n": 2})
        await hub.publish_to_topic("c1", {"n": 3})

        dropped = await asyncio.wait_for(events.__anext__(), timeout=1)
        assert dropped["event"] == "dropped"
        with pytest.raises(StopAsyncIteration):
            await events.__anext__()
