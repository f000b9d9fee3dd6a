"""命令请求体与频道响应 payload

成功与失败的响应都投递到请求所针对的频道 topic：
  成功: {"status": "success", "message": <text>, ...操作相关字段}
  失败: {"status": "error", "message": <text>}
"""

from typing import Any

from pydantic import Field

from .enums import ChannelKind, ResponseStatus
from .message import _CamelModel


class ChatMessageRequest(_CamelModel):
    """send 命令请求体"""

    writer: str = Field(default="", description="显示名")
    content: str | None = Field(default=None, description="文本正文")
    file_url: str | None = Field(default=None, description="附件引用")
    channel_kind: ChannelKind = Field(default=ChannelKind.TEXT, description="频道内容类型")


class MessageModifyRequest(_CamelModel):
    """update 命令请求体"""

    chat_id: str = Field(description="待修改消息 ID")
    req_message: str = Field(description="新正文")


class MessageDeleteRequest(_CamelModel):
    """delete 命令请求体（也接受裸字符串形式的 chat_id）"""

    chat_id: str = Field(description="待删除消息 ID")


def success_payload(message: str, **fields: Any) -> dict[str, Any]:
    """构建成功响应 payload"""
    return {"status": ResponseStatus.SUCCESS.value, "message": message, **fields}


def error_payload(message: str) -> dict[str, Any]:
    """构建失败响应 payload"""
    return {"status": ResponseStatus.ERROR.value, "message": message}
