"""CommandService -- send / update / delete 命令编排

三类命令都在频道 topic 上得到响应：
- send 成功时频道收到消息本身；失败时收到错误 payload
- update / delete 成功与失败都以响应 payload 告知
命令内部的任何异常都不会传播到传输层。
"""

from typing import Any

import structlog
from chatrelay.core.exceptions import (
    DeliveryFailure,
    Forbidden,
    InvalidArgument,
    NotFound,
    RelayError,
    ResourceError,
    Unauthorized,
)
from chatrelay.core.models import (
    ChatMessage,
    ChatMessageRequest,
    CommandKind,
    MessageDeleteRequest,
    MessageDraft,
    MessageModifyRequest,
    error_payload,
    has_content,
    success_payload,
)
from chatrelay.core.store.protocols import MessageStore

from .auth_gate import Session
from .fanout import SubscriberHub
from .publisher import PublishPipeline

log = structlog.get_logger()

# 基础设施类失败时客户端看到的文案
_FAILURE_MESSAGES: dict[CommandKind, str] = {
    CommandKind.SEND: "Failed to send message",
    CommandKind.UPDATE: "Failed to update message",
    CommandKind.DELETE: "Failed to delete message",
}


class CommandService:
    """命令编排服务"""

    def __init__(
        self,
        store: MessageStore,
        pipeline: PublishPipeline,
        hub: SubscriberHub,
    ) -> None:
        self._store = store
        self._pipeline = pipeline
        self._hub = hub

    async def send(
        self, channel_id: str, request: ChatMessageRequest, session: Session
    ) -> None:
        """持久化并发布一条新消息"""
        try:
            if not has_content(request.content, request.file_url):
                raise InvalidArgument()
            identity = self._require_identity(session)

            draft = MessageDraft(
                channel_id=channel_id,
                email=identity,
                writer=request.writer,
                content=request.content,
                file_url=request.file_url,
                channel_kind=request.channel_kind,
            )
            chat_id = await self._store.save(draft)
            message = ChatMessage.from_draft(chat_id, draft)
            await self._pipeline.publish(message)
        except Exception as e:
            await self._reply_failure(channel_id, CommandKind.SEND, e)

    async def update(
        self, channel_id: str, request: MessageModifyRequest, session: Session
    ) -> None:
        """作者修改消息正文"""
        try:
            identity = self._require_identity(session)
            record = await self._authorize(channel_id, request.chat_id, identity)
            if not has_content(request.req_message, record.file_url):
                raise InvalidArgument()

            await self._store.update_body(request.chat_id, request.req_message)
            log.info(
                "message_updated",
                channel_id=channel_id,
                chat_id=request.chat_id,
            )
            await self._reply(
                channel_id,
                success_payload(
                    "Message updated successfully",
                    chatId=request.chat_id,
                    reqMessage=request.req_message,
                ),
            )
        except Exception as e:
            await self._reply_failure(channel_id, CommandKind.UPDATE, e)

    async def delete(
        self, channel_id: str, request: MessageDeleteRequest, session: Session
    ) -> None:
        """作者删除消息"""
        try:
            identity = self._require_identity(session)
            await self._authorize(channel_id, request.chat_id, identity)

            await self._store.delete_by_id(request.chat_id)
            log.info(
                "message_deleted",
                channel_id=channel_id,
                chat_id=request.chat_id,
            )
            await self._reply(
                channel_id,
                success_payload("Message deleted", deletedChatId=request.chat_id),
            )
        except Exception as e:
            await self._reply_failure(channel_id, CommandKind.DELETE, e)

    async def _authorize(
        self, channel_id: str, chat_id: str, identity: str
    ) -> ChatMessage:
        """查找消息并校验作者身份

        消息不属于当前频道时按不存在处理。
        """
        record = await self._store.find_by_id(chat_id)
        if record is None or record.channel_id != channel_id:
            raise NotFound(chat_id)
        if record.email != identity:
            raise Forbidden(chat_id, identity)
        return record

    @staticmethod
    def _require_identity(session: Session) -> str:
        if session.identity is None:
            raise Unauthorized("session has no bound identity")
        return session.identity

    async def _reply(self, channel_id: str, payload: dict[str, Any]) -> None:
        await self._hub.publish_to_topic(channel_id, payload)

    async def _reply_failure(
        self, channel_id: str, kind: CommandKind, error: Exception
    ) -> None:
        if isinstance(error, (DeliveryFailure, ResourceError)) or not isinstance(
            error, RelayError
        ):
            client_message = _FAILURE_MESSAGES[kind]
        else:
            client_message = error.client_message

        if isinstance(error, (InvalidArgument, NotFound, Forbidden)):
            log.info(
                "command_rejected",
                command=kind,
                channel_id=channel_id,
                reason=str(error),
            )
        else:
            log.error(
                "command_failed",
                command=kind,
                channel_id=channel_id,
                error_type=type(error).__name__,
                error=str(error),
            )
        await self._reply(channel_id, error_payload(client_message))
