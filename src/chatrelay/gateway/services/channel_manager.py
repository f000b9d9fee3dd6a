"""ChannelLifecycleManager -- 频道 broker 资源的按需创建与拆除

一个频道对应：
- 持久化队列 chat.channel.<id>
- 队列到聊天 exchange 的绑定（routing key 同名）
- 一个 ConsumerRelay

同一频道的 ensure / teardown / 发布由频道级锁串行化；不同频道互不阻塞。
ACTIVE 状态表示上述三项在本实例内全部就绪。
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from chatrelay.core.config import RELAY_GRACE_PERIOD_S
from chatrelay.core.exceptions import ResourceError
from chatrelay.core.models import (
    ChannelInfo,
    ChannelState,
    fingerprint_key_prefix,
    queue_name,
    routing_key,
    validate_channel_transition,
)
from chatrelay.core.store.protocols import BrokerGateway, FingerprintCache

from .fanout import SubscriberHub
from .keyed_lock import KeyedLock
from .relay import ConsumerRelay
from .worker_pool import WorkerPool

log = structlog.get_logger()


class ChannelHandle:
    """频道运行时句柄"""

    def __init__(self, channel_id: str) -> None:
        self.channel_id = channel_id
        self.queue = queue_name(channel_id)
        self.routing_key = routing_key(channel_id)
        self.state = ChannelState.UNINITIALIZED
        self.relay: ConsumerRelay | None = None

    def transition(self, to_state: ChannelState) -> None:
        if not validate_channel_transition(self.state, to_state):
            raise ValueError(
                f"invalid channel transition {self.state} -> {to_state}"
            )
        self.state = to_state

    @property
    def healthy(self) -> bool:
        return (
            self.state == ChannelState.ACTIVE
            and self.relay is not None
            and self.relay.running
        )

    def info(self) -> ChannelInfo:
        return ChannelInfo(
            channel_id=self.channel_id,
            queue=self.queue,
            routing_key=self.routing_key,
            state=self.state,
        )


class ChannelLifecycleManager:
    """频道生命周期管理器"""

    def __init__(
        self,
        broker: BrokerGateway,
        cache: FingerprintCache,
        hub: SubscriberHub,
        relay_pool: WorkerPool,
        exchange: str,
        prefetch: int | None = None,
        grace_period_s: float = RELAY_GRACE_PERIOD_S,
    ) -> None:
        self._broker = broker
        self._cache = cache
        self._hub = hub
        self._relay_pool = relay_pool
        self._exchange = exchange
        self._prefetch = prefetch
        self._grace_period_s = grace_period_s
        self._channels: dict[str, ChannelHandle] = {}
        self._channel_locks = KeyedLock()

    @asynccontextmanager
    async def hold(self, channel_id: str) -> AsyncIterator[None]:
        """持有频道级锁

        持有期间该频道不会被拆除或重建；锁内用 ensure_locked 激活频道。
        """
        async with self._channel_locks.hold(channel_id):
            yield

    async def ensure_channel(self, channel_id: str) -> ChannelHandle:
        """确保频道的队列、绑定与消费者在本实例内就绪（幂等）

        Raises:
            ResourceError: 声明、绑定或订阅失败
        """
        async with self.hold(channel_id):
            return await self.ensure_locked(channel_id)

    async def ensure_locked(self, channel_id: str) -> ChannelHandle:
        """ensure_channel 的锁内版本，调用方须已 hold(channel_id)"""
        handle = self._channels.get(channel_id)
        if handle is not None and handle.healthy:
            return handle

        if handle is not None:
            # 消费循环已退出，丢弃旧句柄后重建
            log.warning("channel_relay_lost", channel_id=channel_id)
            self._channels.pop(channel_id, None)
            if handle.relay is not None:
                await handle.relay.stop(self._grace_period_s)

        handle = ChannelHandle(channel_id)
        await self._broker.declare_queue(handle.queue, durable=True)
        await self._broker.bind(handle.queue, self._exchange, handle.routing_key)

        relay = ConsumerRelay(
            channel_id,
            self._broker,
            self._hub,
            self._relay_pool,
            prefetch=self._prefetch,
        )
        await relay.start()
        handle.relay = relay
        handle.transition(ChannelState.ACTIVE)
        self._channels[channel_id] = handle

        log.info(
            "channel_activated",
            channel_id=channel_id,
            queue=handle.queue,
            exchange=self._exchange,
        )
        return handle

    async def teardown_channel(self, channel_id: str) -> bool:
        """拆除频道：停止消费者、删除队列、清理缓存条目

        对本实例从未激活过的频道同样删除队列与缓存（队列可能由其他实例创建）。

        Returns:
            本实例是否持有该频道的消费者

        Raises:
            ResourceError: 队列删除或缓存清理失败
        """
        async with self.hold(channel_id):
            handle = self._channels.pop(channel_id, None)
            if handle is not None:
                handle.transition(ChannelState.TEARDOWN)
                if handle.relay is not None:
                    await handle.relay.stop(self._grace_period_s)

            await self._broker.delete_queue(queue_name(channel_id))
            try:
                removed = await self._cache.delete_by_prefix(
                    fingerprint_key_prefix(channel_id)
                )
            except ResourceError:
                raise
            except Exception as e:
                raise ResourceError(
                    f"failed to clear cache entries for channel {channel_id}",
                    original_error=e,
                ) from e

            log.info(
                "channel_torn_down",
                channel_id=channel_id,
                had_relay=handle is not None,
                cache_entries_removed=removed,
            )
            return handle is not None

    def get(self, channel_id: str) -> ChannelHandle | None:
        return self._channels.get(channel_id)

    def list_channels(self) -> list[ChannelInfo]:
        return [h.info() for h in sorted(self._channels.values(), key=lambda h: h.channel_id)]

    async def shutdown(self) -> None:
        """停止本实例所有消费者（不删除队列，其他实例仍可能使用）"""
        handles = list(self._channels.values())
        self._channels.clear()
        for handle in handles:
            if handle.relay is not None:
                await handle.relay.stop(self._grace_period_s)
        log.info("channel_manager_shutdown", stopped=len(handles))
