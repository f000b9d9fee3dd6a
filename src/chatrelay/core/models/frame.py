"""传输帧模型

WebSocket 上每条文本消息为一个 JSON 帧：
  {"command": "SEND", "headers": {"destination": "...", "Authorization": "Bearer ..."}, "body": ...}
"""

from typing import Any

from pydantic import BaseModel, Field

from .enums import FrameCommand


class Frame(BaseModel):
    """传输帧"""

    command: FrameCommand = Field(description="帧命令")
    headers: dict[str, str] = Field(default_factory=dict, description="帧头")
    body: Any = Field(default=None, description="帧体（JSON 值）")

    def header(self, name: str) -> str | None:
        """按名称读取帧头，大小写不敏感"""
        if name in self.headers:
            return self.headers[name]
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    @property
    def destination(self) -> str | None:
        return self.header("destination")
