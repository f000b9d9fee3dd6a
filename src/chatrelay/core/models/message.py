"""ChatMessage Domain Model

消息在传输层与 Broker 之间流转的统一格式。
正文由文本与附件引用组成，二者至少有一个非空。
JSON 字段使用 camelCase（chatId、fileUrl ...），与客户端约定一致。
"""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .enums import ChannelKind, MessageKind


class _CamelModel(BaseModel):
    """camelCase JSON 序列化基类"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def has_content(content: str | None, file_url: str | None) -> bool:
    """正文是否非空（文本或附件引用至少一个）"""
    return bool(content) or bool(file_url)


class MessageDraft(_CamelModel):
    """待持久化的消息 -- 尚未分配 chat_id"""

    channel_id: str = Field(description="频道 ID")
    email: str = Field(description="作者身份（email 形式）")
    writer: str = Field(default="", description="显示名")
    content: str | None = Field(default=None, description="文本正文")
    file_url: str | None = Field(default=None, description="附件引用")
    channel_kind: ChannelKind = Field(default=ChannelKind.TEXT, description="频道内容类型")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="创建时间",
    )


class ChatMessage(_CamelModel):
    """ChatMessage -- 传输表示

    发布后不再修改；Update 命令只写入新正文并发布结果。
    """

    chat_id: str = Field(description="消息 ID，由持久化层分配")
    channel_id: str = Field(description="频道 ID")
    email: str = Field(description="作者身份（email 形式）")
    writer: str = Field(default="", description="显示名")
    content: str | None = Field(default=None, description="文本正文")
    file_url: str | None = Field(default=None, description="附件引用")
    channel_kind: ChannelKind = Field(default=ChannelKind.TEXT, description="频道内容类型")
    message_kind: MessageKind = Field(default=MessageKind.MESSAGE, description="消息类型标记")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="创建时间",
    )

    @classmethod
    def from_draft(cls, chat_id: str, draft: MessageDraft) -> "ChatMessage":
        """由已持久化的草稿构建传输消息"""
        return cls(
            chat_id=chat_id,
            channel_id=draft.channel_id,
            email=draft.email,
            writer=draft.writer,
            content=draft.content,
            file_url=draft.file_url,
            channel_kind=draft.channel_kind,
            created_at=draft.created_at,
        )

    def body_bytes(self) -> bytes:
        """指纹计算使用的正文字节

        纯文本消息只取文本，保证与历史指纹一致；带附件时附加附件引用。
        """
        text = self.content or ""
        if self.file_url:
            return f"{text}\n{self.file_url}".encode()
        return text.encode()

    def to_payload(self) -> dict:
        """序列化为投递给订阅者的 JSON dict"""
        return self.model_dump(mode="json", by_alias=True)
