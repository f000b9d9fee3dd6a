"""CommandRouter -- 应用目的地到命令处理器的映射

SEND 帧目的地（前缀 /pub/）：
  chat.message.<channelId>         -> send
  chat.message.update.<channelId>  -> update
  chat.message.delete.<channelId>  -> delete
"""

import json
from dataclasses import dataclass
from typing import Any

import structlog
from chatrelay.core.config import APP_DESTINATION_PREFIX
from chatrelay.core.exceptions import InvalidArgument
from chatrelay.core.models import (
    ChatMessageRequest,
    CommandKind,
    Frame,
    MessageDeleteRequest,
    MessageModifyRequest,
    error_payload,
)
from pydantic import ValidationError

from .auth_gate import Session
from .command_service import CommandService
from .fanout import SubscriberHub

log = structlog.get_logger()

# 匹配顺序：更长的前缀优先
_ROUTES: list[tuple[str, CommandKind]] = [
    ("chat.message.update.", CommandKind.UPDATE),
    ("chat.message.delete.", CommandKind.DELETE),
    ("chat.message.", CommandKind.SEND),
]


@dataclass(frozen=True)
class Route:
    """解析后的命令目标"""

    kind: CommandKind
    channel_id: str


def resolve(destination: str | None) -> Route:
    """解析 SEND 帧目的地

    Raises:
        InvalidArgument: 目的地不是已知的应用目的地
    """
    if not destination or not destination.startswith(APP_DESTINATION_PREFIX):
        raise InvalidArgument(f"unknown destination: {destination}")
    name = destination[len(APP_DESTINATION_PREFIX):]
    for prefix, kind in _ROUTES:
        if name.startswith(prefix):
            channel_id = name[len(prefix):]
            if channel_id:
                return Route(kind=kind, channel_id=channel_id)
            break
    raise InvalidArgument(f"unknown destination: {destination}")


def _json_body(body: Any) -> Any:
    if isinstance(body, (str, bytes)):
        try:
            return json.loads(body)
        except ValueError:
            return body
    return body


class CommandRouter:
    """命令路由 -- 在传输边界解析一次，分发到 CommandService"""

    def __init__(self, service: CommandService, hub: SubscriberHub) -> None:
        self._service = service
        self._hub = hub

    async def dispatch(self, frame: Frame, session: Session) -> Route:
        """分发 SEND 帧

        请求体不合法时向频道 topic 投递错误 payload。

        Raises:
            InvalidArgument: 目的地无法解析（此时没有可响应的频道）
        """
        route = resolve(frame.destination)
        body = _json_body(frame.body)
        try:
            if route.kind == CommandKind.SEND:
                request = ChatMessageRequest.model_validate(body or {})
                await self._service.send(route.channel_id, request, session)
            elif route.kind == CommandKind.UPDATE:
                request = MessageModifyRequest.model_validate(body)
                await self._service.update(route.channel_id, request, session)
            else:
                if isinstance(body, (str, int)) and not isinstance(body, bool):
                    # 删除命令允许直接以 chat_id 作为帧体
                    request = MessageDeleteRequest(chat_id=str(body))
                else:
                    request = MessageDeleteRequest.model_validate(body)
                await self._service.delete(route.channel_id, request, session)
        except ValidationError as e:
            log.info(
                "command_rejected",
                command=route.kind,
                channel_id=route.channel_id,
                reason=f"invalid request body: {e.error_count()} errors",
            )
            await self._hub.publish_to_topic(
                route.channel_id, error_payload(InvalidArgument.client_message)
            )
        return route
