"""枚举定义

包含 ChannelState 状态机、ChannelKind、MessageKind、FrameCommand、
CommandKind、ResponseStatus 枚举，以及频道状态合法流转映射。
"""

from enum import StrEnum


class ChannelState(StrEnum):
    """频道生命周期状态"""

    UNINITIALIZED = "UNINITIALIZED"
    ACTIVE = "ACTIVE"
    # 终态：再次发布时由新实例重新走 ensure
    TEARDOWN = "TEARDOWN"


VALID_CHANNEL_TRANSITIONS: dict[ChannelState, set[ChannelState]] = {
    ChannelState.UNINITIALIZED: {ChannelState.ACTIVE, ChannelState.TEARDOWN},
    ChannelState.ACTIVE: {ChannelState.TEARDOWN},
    ChannelState.TEARDOWN: set(),
}


def validate_channel_transition(
    from_state: ChannelState, to_state: ChannelState
) -> bool:
    """验证频道状态流转是否合法"""
    return to_state in VALID_CHANNEL_TRANSITIONS.get(from_state, set())


class ChannelKind(StrEnum):
    """频道内容类型"""

    TEXT = "TEXT"
    FILE = "FILE"


class MessageKind(StrEnum):
    """消息类型标记"""

    MESSAGE = "MESSAGE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class FrameCommand(StrEnum):
    """传输帧命令（沿用 STOMP 命令名）"""

    # 客户端 -> 服务端
    CONNECT = "CONNECT"
    SUBSCRIBE = "SUBSCRIBE"
    UNSUBSCRIBE = "UNSUBSCRIBE"
    SEND = "SEND"
    DISCONNECT = "DISCONNECT"

    # 服务端 -> 客户端
    CONNECTED = "CONNECTED"
    MESSAGE = "MESSAGE"
    RECEIPT = "RECEIPT"
    ERROR = "ERROR"


# 需要经过授权关卡校验的帧
AUTHENTICATED_COMMANDS: set[FrameCommand] = {FrameCommand.CONNECT, FrameCommand.SEND}


class CommandKind(StrEnum):
    """客户端可见的三类命令"""

    SEND = "send"
    UPDATE = "update"
    DELETE = "delete"


class ResponseStatus(StrEnum):
    """频道响应 payload 状态"""

    SUCCESS = "success"
    ERROR = "error"
