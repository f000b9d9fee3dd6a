"""PublishPipeline -- 去重 + broker 发布 + 本地直推

单条消息的发布流程，全程持有频道级锁（与 ensure / teardown 互斥）：
1. 计算正文 SHA-256 指纹，与频道最近一条指纹比较；相同则静默丢弃
2. 确保频道 broker 资源就绪
3. 写入指纹（TTL 去重窗口）
4. 发布到聊天 exchange，routing key chat.channel.<id>
5. 直推到本地 topic 目的地

指纹缓存不可用时降级为不去重，消息照常投递。
"""

import hashlib

import structlog
from chatrelay.core.config import FINGERPRINT_TTL_S, MESSAGE_PREVIEW_LENGTH
from chatrelay.core.exceptions import DeliveryFailure
from chatrelay.core.models import ChatMessage, fingerprint_key, routing_key
from chatrelay.core.store.protocols import BrokerGateway, FingerprintCache

from .channel_manager import ChannelLifecycleManager
from .fanout import SubscriberHub

log = structlog.get_logger()


def fingerprint(message: ChatMessage) -> str:
    """正文指纹：SHA-256 的 64 位小写十六进制"""
    return hashlib.sha256(message.body_bytes()).hexdigest()


class PublishPipeline:
    """消息发布管道"""

    def __init__(
        self,
        channels: ChannelLifecycleManager,
        broker: BrokerGateway,
        cache: FingerprintCache,
        hub: SubscriberHub,
        exchange: str,
        ttl_s: int = FINGERPRINT_TTL_S,
    ) -> None:
        self._channels = channels
        self._broker = broker
        self._cache = cache
        self._hub = hub
        self._exchange = exchange
        self._ttl_s = ttl_s

    async def publish(self, message: ChatMessage) -> bool:
        """发布一条消息

        Returns:
            True 表示已投递；False 表示被判定为重复而丢弃

        Raises:
            ResourceError: 频道资源创建失败
            DeliveryFailure: broker 发布或本地直推失败（指纹不回滚）
        """
        channel_id = message.channel_id
        digest = fingerprint(message)
        key = fingerprint_key(channel_id)

        async with self._channels.hold(channel_id):
            if await self._last_fingerprint(key) == digest:
                log.info(
                    "duplicate_message_suppressed",
                    channel_id=channel_id,
                    chat_id=message.chat_id,
                )
                return False

            await self._channels.ensure_locked(channel_id)
            await self._remember(key, digest)

            body = message.model_dump_json(by_alias=True).encode()
            try:
                await self._broker.publish(self._exchange, routing_key(channel_id), body)
            except DeliveryFailure:
                raise
            except Exception as e:
                raise DeliveryFailure(
                    f"broker publish failed for channel {channel_id}",
                    original_error=e,
                ) from e

            try:
                delivered = await self._hub.publish_to_topic(
                    channel_id, message.to_payload()
                )
            except Exception as e:
                raise DeliveryFailure(
                    f"local fan-out failed for channel {channel_id}",
                    original_error=e,
                ) from e

            log.info(
                "message_published",
                channel_id=channel_id,
                chat_id=message.chat_id,
                local_subscribers=delivered,
                preview=(message.content or "")[:MESSAGE_PREVIEW_LENGTH],
            )
            return True

    async def _last_fingerprint(self, key: str) -> str | None:
        try:
            return await self._cache.get(key)
        except Exception as e:
            log.warning(
                "fingerprint_cache_unavailable",
                op="get",
                key=key,
                error_type=type(e).__name__,
                error=str(e),
            )
            return None

    async def _remember(self, key: str, digest: str) -> None:
        try:
            await self._cache.set(key, digest, self._ttl_s)
        except Exception as e:
            log.warning(
                "fingerprint_cache_unavailable",
                op="set",
                key=key,
                error_type=type(e).__name__,
                error=str(e),
            )
