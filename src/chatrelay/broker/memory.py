"""MemoryBrokerGateway -- 进程内消息代理

单实例部署与测试使用。行为与 topic exchange 一致：
publish 按 routing key 路由到所有已绑定的队列，
队列内消息由订阅者竞争消费（同一条只投递给一个订阅者）。
"""

import asyncio
from collections import defaultdict

import structlog

from chatrelay.core.exceptions import DeliveryFailure, ResourceError

log = structlog.get_logger()


def topic_matches(pattern: str, key: str) -> bool:
    """AMQP topic 匹配：* 匹配一个单词，# 匹配零个或多个单词"""
    return _match(pattern.split("."), key.split("."))


def _match(pattern: list[str], words: list[str]) -> bool:
    if not pattern:
        return not words
    head, rest = pattern[0], pattern[1:]
    if head == "#":
        return any(_match(rest, words[i:]) for i in range(len(words) + 1))
    if not words:
        return False
    if head == "*" or head == words[0]:
        return _match(rest, words[1:])
    return False


class MemorySubscription:
    """队列订阅 -- close() 后迭代结束，未取走的消息留在队列中"""

    def __init__(self, queue: str, inbox: asyncio.Queue) -> None:
        self.queue = queue
        self._inbox = inbox
        self._closed = asyncio.Event()

    def __aiter__(self) -> "MemorySubscription":
        return self

    async def __anext__(self) -> bytes:
        if self._closed.is_set():
            raise StopAsyncIteration
        get_task = asyncio.ensure_future(self._inbox.get())
        close_task = asyncio.ensure_future(self._closed.wait())
        done, _ = await asyncio.wait(
            {get_task, close_task}, return_when=asyncio.FIRST_COMPLETED
        )
        if get_task in done:
            close_task.cancel()
            return get_task.result()
        get_task.cancel()
        raise StopAsyncIteration

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def close(self) -> None:
        self._closed.set()


class MemoryBrokerGateway:
    """进程内 topic exchange + 持久化队列模拟"""

    def __init__(self) -> None:
        self._queues: dict[str, asyncio.Queue] = {}
        # exchange -> set of (queue, routing_key)
        self._bindings: dict[str, set[tuple[str, str]]] = defaultdict(set)
        self._subscriptions: dict[str, set[MemorySubscription]] = defaultdict(set)
        self.published: list[tuple[str, str, bytes]] = []
        self.declare_calls = 0
        self.bind_calls = 0
        self._closed = False

    async def declare_queue(self, name: str, durable: bool = True) -> None:
        self._ensure_open(ResourceError)
        self.declare_calls += 1
        if name not in self._queues:
            self._queues[name] = asyncio.Queue()
            log.debug("memory_queue_declared", queue=name, durable=durable)

    async def bind(self, queue: str, exchange: str, routing_key: str) -> None:
        self._ensure_open(ResourceError)
        if queue not in self._queues:
            raise ResourceError(f"queue not found: {queue}")
        self.bind_calls += 1
        self._bindings[exchange].add((queue, routing_key))

    async def delete_queue(self, name: str) -> None:
        self._ensure_open(ResourceError)
        self._queues.pop(name, None)
        for bindings in self._bindings.values():
            for binding in [b for b in bindings if b[0] == name]:
                bindings.discard(binding)
        # 队列删除时 broker 会取消其上的消费者
        for sub in self._subscriptions.pop(name, set()):
            await sub.close()

    async def publish(self, exchange: str, routing_key: str, payload: bytes) -> None:
        self._ensure_open(DeliveryFailure)
        self.published.append((exchange, routing_key, payload))
        for queue, binding_key in list(self._bindings.get(exchange, set())):
            if topic_matches(binding_key, routing_key) and queue in self._queues:
                self._queues[queue].put_nowait(payload)

    async def subscribe(self, queue: str, prefetch: int | None = None) -> MemorySubscription:
        self._ensure_open(ResourceError)
        if queue not in self._queues:
            raise ResourceError(f"queue not found: {queue}")
        sub = MemorySubscription(queue, self._queues[queue])
        self._subscriptions[queue].add(sub)
        return sub

    def has_queue(self, name: str) -> bool:
        return name in self._queues

    def bindings_for(self, queue: str) -> list[tuple[str, str]]:
        """列出队列的所有 (exchange, routing_key) 绑定"""
        return sorted(
            (exchange, key)
            for exchange, bindings in self._bindings.items()
            for q, key in bindings
            if q == queue
        )

    def active_subscriptions(self, queue: str) -> int:
        return sum(1 for sub in self._subscriptions.get(queue, set()) if not sub.closed)

    async def ping(self) -> bool:
        return not self._closed

    async def close(self) -> None:
        self._closed = True
        for subs in self._subscriptions.values():
            for sub in subs:
                await sub.close()
        self._subscriptions.clear()

    def _ensure_open(self, error_cls: type[DeliveryFailure] | type[ResourceError]) -> None:
        if self._closed:
            raise error_cls("memory broker is closed")
