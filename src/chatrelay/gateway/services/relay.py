"""ConsumerRelay -- 频道队列消费者

从频道的持久化队列逐条取出 broker 投递的消息，反序列化后
推送到本地 exchange 目的地。转发工作在共享的 WorkerPool 中并发执行，
以 relay 实例为 owner 归组，拆除频道时只等待本频道的在途转发。
"""

import asyncio

import structlog
from chatrelay.core.exceptions import SerializationError
from chatrelay.core.models import ChatMessage, queue_name
from chatrelay.core.store.protocols import BrokerGateway, BrokerSubscription
from pydantic import ValidationError
from ulid import ULID

from .fanout import SubscriberHub
from .worker_pool import WorkerPool

log = structlog.get_logger()


class ConsumerRelay:
    """单频道消费者"""

    def __init__(
        self,
        channel_id: str,
        broker: BrokerGateway,
        hub: SubscriberHub,
        pool: WorkerPool,
        prefetch: int | None = None,
    ) -> None:
        self.channel_id = channel_id
        self._broker = broker
        self._hub = hub
        self._pool = pool
        self._prefetch = prefetch
        # 同一频道重建后的新 relay 与旧 relay 的在途任务互不干扰
        self._owner = f"relay:{channel_id}:{ULID()}"
        self._subscription: BrokerSubscription | None = None
        self._task: asyncio.Task | None = None
        self._stopping = False
        self.forwarded = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return (
            self._task is not None
            and not self._task.done()
            and not self._stopping
        )

    async def start(self) -> None:
        """订阅频道队列并启动消费循环

        Raises:
            ResourceError: 订阅失败
        """
        self._subscription = await self._broker.subscribe(
            queue_name(self.channel_id), prefetch=self._prefetch
        )
        self._task = asyncio.create_task(
            self._consume(), name=f"relay-{self.channel_id}"
        )
        log.info("relay_started", channel_id=self.channel_id)

    @staticmethod
    def decode(body: bytes) -> ChatMessage:
        """反序列化 broker payload

        Raises:
            SerializationError: payload 不是合法的 ChatMessage
        """
        try:
            return ChatMessage.model_validate_json(body)
        except ValidationError as e:
            raise SerializationError(
                f"undecodable payload: {e.error_count()} validation errors"
            ) from e

    async def _consume(self) -> None:
        assert self._subscription is not None
        try:
            async for body in self._subscription:
                await self._pool.submit(self._forward(body), owner=self._owner)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # 消费循环异常退出后 running 变为 False，下次 ensure 时重建
            log.error(
                "relay_failed",
                channel_id=self.channel_id,
                error_type=type(e).__name__,
                error=str(e),
            )

    async def _forward(self, body: bytes) -> None:
        try:
            message = self.decode(body)
        except SerializationError as e:
            self.dropped += 1
            log.warning(
                "relay_message_dropped",
                channel_id=self.channel_id,
                reason=str(e),
                size=len(body),
            )
            return
        await self._hub.publish_to_exchange(self.channel_id, message.to_payload())
        self.forwarded += 1

    async def stop(self, grace_period_s: float) -> int:
        """停止接收新投递，有界等待在途转发

        Returns:
            超时后被取消的转发任务数量
        """
        self._stopping = True
        loop = asyncio.get_running_loop()
        deadline = loop.time() + grace_period_s

        if self._subscription is not None:
            await self._subscription.close()

        if self._task is not None and not self._task.done():
            _, pending = await asyncio.wait({self._task}, timeout=grace_period_s)
            if pending:
                self._task.cancel()
                await asyncio.gather(self._task, return_exceptions=True)

        remaining = max(deadline - loop.time(), 0)
        cancelled = await self._pool.drain(owner=self._owner, timeout=remaining)
        log.info(
            "relay_stopped",
            channel_id=self.channel_id,
            forwarded=self.forwarded,
            dropped=self.dropped,
            cancelled=cancelled,
        )
        return cancelled
