"""外部协作方 Protocol 接口定义

消息持久化、指纹缓存、消息代理、凭证校验均以能力接口的形式被核心使用，
使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from collections.abc import AsyncIterator
from typing import Protocol

from ..models.message import ChatMessage, MessageDraft


class MessageStore(Protocol):
    """消息持久化接口"""

    async def save(self, draft: MessageDraft) -> str:
        """保存消息，返回分配的 chat_id"""
        ...

    async def find_by_id(self, chat_id: str) -> ChatMessage | None:
        """根据 chat_id 查询消息"""
        ...

    async def update_body(self, chat_id: str, content: str) -> None:
        """写入修改后的正文"""
        ...

    async def delete_by_id(self, chat_id: str) -> None:
        """删除消息"""
        ...


class FingerprintCache(Protocol):
    """带过期时间的 key/value 缓存"""

    async def get(self, key: str) -> str | None:
        """读取 key，不存在或已过期返回 None"""
        ...

    async def set(self, key: str, value: str, ttl_s: int) -> None:
        """写入 key 并设置过期时间（秒）"""
        ...

    async def delete_by_prefix(self, prefix: str) -> int:
        """删除所有以 prefix 开头的 key，返回删除数量"""
        ...


class BrokerSubscription(Protocol):
    """队列订阅 -- 异步迭代得到每条投递的原始 payload"""

    def __aiter__(self) -> AsyncIterator[bytes]: ...

    async def close(self) -> None:
        """停止接收新投递，迭代随之结束"""
        ...


class BrokerGateway(Protocol):
    """消息代理能力接口"""

    async def declare_queue(self, name: str, durable: bool = True) -> None: ...

    async def bind(self, queue: str, exchange: str, routing_key: str) -> None: ...

    async def delete_queue(self, name: str) -> None: ...

    async def publish(self, exchange: str, routing_key: str, payload: bytes) -> None: ...

    async def subscribe(self, queue: str, prefetch: int | None = None) -> BrokerSubscription: ...


class CredentialValidator(Protocol):
    """凭证校验接口"""

    def validate(self, token: str) -> str:
        """校验凭证并返回身份；失败抛出 InvalidCredential"""
        ...
