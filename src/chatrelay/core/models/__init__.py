"""ChatRelay Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .channel import (
    ChannelInfo,
    exchange_destination,
    fingerprint_key,
    fingerprint_key_prefix,
    queue_name,
    routing_key,
    topic_destination,
)
from .enums import (
    AUTHENTICATED_COMMANDS,
    VALID_CHANNEL_TRANSITIONS,
    ChannelKind,
    ChannelState,
    CommandKind,
    FrameCommand,
    MessageKind,
    ResponseStatus,
    validate_channel_transition,
)
from .frame import Frame
from .message import ChatMessage, MessageDraft, has_content
from .payloads import (
    ChatMessageRequest,
    MessageDeleteRequest,
    MessageModifyRequest,
    error_payload,
    success_payload,
)

__all__ = [
    # 枚举
    "ChannelState",
    "ChannelKind",
    "MessageKind",
    "FrameCommand",
    "CommandKind",
    "ResponseStatus",
    "AUTHENTICATED_COMMANDS",
    # 状态机
    "VALID_CHANNEL_TRANSITIONS",
    "validate_channel_transition",
    # Channel 命名
    "ChannelInfo",
    "queue_name",
    "routing_key",
    "topic_destination",
    "exchange_destination",
    "fingerprint_key",
    "fingerprint_key_prefix",
    # Message
    "ChatMessage",
    "MessageDraft",
    "has_content",
    # Frame
    "Frame",
    # Payloads
    "ChatMessageRequest",
    "MessageModifyRequest",
    "MessageDeleteRequest",
    "success_payload",
    "error_payload",
]
