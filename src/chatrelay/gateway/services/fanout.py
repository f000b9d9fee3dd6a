"""SubscriberHub -- 内存中的本地订阅者扇出

每个订阅者持有一个 asyncio.Queue，按目的地（destination）分组。
频道有两个目的地：
- /topic/chat.channel.<id>: 本实例直推的消息与命令响应
- /exchange/<exchange>/chat.channel.<id>: Consumer Relay 从 broker 转发的消息

队列写满的订阅者被移出扇出表：其队列被清空并放入 SUBSCRIPTION_DROPPED，
消费方读到该标记后须结束订阅并通知客户端。
"""

import asyncio
from collections import defaultdict
from typing import Any

import structlog
from chatrelay.core.config import SUBSCRIBER_QUEUE_MAXSIZE
from chatrelay.core.models import exchange_destination, topic_destination

log = structlog.get_logger()

# 订阅已被移除的标记（队列中的最后一项）
SUBSCRIPTION_DROPPED = object()


class SubscriberHub:
    """本地扇出 -- 基于 asyncio.Queue 的发布/订阅"""

    def __init__(
        self,
        exchange: str,
        queue_maxsize: int = SUBSCRIBER_QUEUE_MAXSIZE,
    ) -> None:
        # destination -> set of asyncio.Queue
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)
        self._exchange = exchange
        self._queue_maxsize = queue_maxsize

    async def subscribe(self, destination: str) -> asyncio.Queue:
        """订阅指定目的地

        Returns:
            asyncio.Queue 实例，新 payload 会被推送到此队列
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        self._subscribers[destination].add(queue)
        return queue

    async def unsubscribe(self, destination: str, queue: asyncio.Queue) -> None:
        self._subscribers[destination].discard(queue)
        if not self._subscribers[destination]:
            del self._subscribers[destination]

    async def broadcast(self, destination: str, payload: dict[str, Any]) -> int:
        """向目的地的所有订阅者广播

        Returns:
            成功投递的订阅者数量
        """
        delivered = 0
        dead_queues = []
        for queue in self._subscribers.get(destination, set()):
            try:
                queue.put_nowait(payload)
                delivered += 1
            except asyncio.QueueFull:
                dead_queues.append(queue)

        # 清理已满的队列（慢订阅者）
        for q in dead_queues:
            self._subscribers[destination].discard(q)
            discarded = self._mark_dropped(q)
            log.warning(
                "slow_subscriber_dropped",
                destination=destination,
                discarded=discarded,
            )
        if destination in self._subscribers and not self._subscribers[destination]:
            del self._subscribers[destination]
        return delivered

    @staticmethod
    def _mark_dropped(queue: asyncio.Queue) -> int:
        """丢弃积压并写入 SUBSCRIPTION_DROPPED，返回丢弃条数"""
        discarded = 0
        while not queue.empty():
            queue.get_nowait()
            discarded += 1
        queue.put_nowait(SUBSCRIPTION_DROPPED)
        return discarded

    async def publish_to_topic(self, channel_id: str, payload: dict[str, Any]) -> int:
        """投递到频道 topic 目的地"""
        return await self.broadcast(topic_destination(channel_id), payload)

    async def publish_to_exchange(self, channel_id: str, payload: dict[str, Any]) -> int:
        """投递到频道 exchange 目的地（broker 转发路径）"""
        return await self.broadcast(
            exchange_destination(self._exchange, channel_id), payload
        )

    def subscriber_count(self, destination: str) -> int:
        return len(self._subscribers.get(destination, set()))
