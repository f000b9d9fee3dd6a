"""Channel 命名约定

队列名、routing key、本地目的地的拼接规则需与其他实例及客户端逐字节一致。
"""

from pydantic import BaseModel, Field

from ..config import (
    CHANNEL_PREFIX,
    EXCHANGE_DESTINATION_PREFIX,
    FINGERPRINT_KEY_PREFIX,
    TOPIC_DESTINATION_PREFIX,
)
from .enums import ChannelState


def queue_name(channel_id: str) -> str:
    """频道队列名：chat.channel.<channel_id>"""
    return f"{CHANNEL_PREFIX}{channel_id}"


def routing_key(channel_id: str) -> str:
    """频道 routing key，与队列名相同"""
    return f"{CHANNEL_PREFIX}{channel_id}"


def topic_destination(channel_id: str) -> str:
    """本地直推目的地：/topic/chat.channel.<channel_id>"""
    return f"{TOPIC_DESTINATION_PREFIX}{CHANNEL_PREFIX}{channel_id}"


def exchange_destination(exchange: str, channel_id: str) -> str:
    """跨实例转发目的地：/exchange/<exchange>/chat.channel.<channel_id>"""
    return f"{EXCHANGE_DESTINATION_PREFIX}{exchange}/{CHANNEL_PREFIX}{channel_id}"


def fingerprint_key(channel_id: str) -> str:
    """频道指纹缓存 key（单槽位，只保存最近一条）"""
    return f"{fingerprint_key_prefix(channel_id)}messages"


def fingerprint_key_prefix(channel_id: str) -> str:
    """频道所有缓存条目的公共前缀，拆除频道时按前缀清理"""
    return f"{FINGERPRINT_KEY_PREFIX}{channel_id}:"


class ChannelInfo(BaseModel):
    """频道对外快照"""

    channel_id: str = Field(description="频道 ID")
    queue: str = Field(description="Broker 队列名")
    routing_key: str = Field(description="绑定 routing key")
    state: ChannelState = Field(description="生命周期状态")
