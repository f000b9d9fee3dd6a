"""CommandService 测试 -- send / update / delete 的响应 payload"""

from unittest.mock import AsyncMock

import pytest
from chatrelay.core.exceptions import DeliveryFailure
from chatrelay.core.models import (
    ChatMessageRequest,
    MessageDeleteRequest,
    MessageDraft,
    MessageModifyRequest,
)
from chatrelay.gateway.services.auth_gate import Session
from chatrelay.gateway.services.command_service import CommandService

TOPIC = "/topic/chat.channel.c1"


def _session(identity: str = "alice@example.com") -> Session:
    session = Session()
    session.bind(identity)
    return session


@pytest.fixture
async def topic(hub):
    return await hub.subscribe(TOPIC)


@pytest.fixture
async def alice_message(message_store) -> str:
    return await message_store.save(
        MessageDraft(channel_id="c1", email="alice@example.com", writer="Alice", content="hi")
    )


class TestSend:
    async def test_persists_and_publishes(
        self, command_service: CommandService, message_store, broker, topic
    ):
        await command_service.send(
            "c1", ChatMessageRequest(writer="Alice", content="hello"), _session()
        )

        payload = topic.get_nowait()
        assert payload["content"] == "hello"
        assert payload["email"] == "alice@example.com"
        stored = await message_store.find_by_id(payload["chatId"])
        assert stored.content == "hello"
        assert len(broker.published) == 1

    async def test_attachment_only_is_valid(self, command_service, topic):
        await command_service.send(
            "c1", ChatMessageRequest(file_url="https://files/a.png"), _session()
        )
        assert topic.get_nowait()["fileUrl"] == "https://files/a.png"

    async def test_empty_body_rejected_without_persistence(self, pipeline, hub, topic):
        store = AsyncMock()
        service = CommandService(store, pipeline, hub)

        await service.send("c1", ChatMessageRequest(content="", file_url=None), _session())

        assert topic.get_nowait() == {"status": "error", "message": "Invalid message content"}
        store.save.assert_not_awaited()

    async def test_delivery_failure_reported(self, message_store, hub, topic):
        pipeline = AsyncMock()
        pipeline.publish.side_effect = DeliveryFailure("broker down")
        service = CommandService(message_store, pipeline, hub)

        await service.send("c1", ChatMessageRequest(content="hello"), _session())

        assert topic.get_nowait() == {"status": "error", "message": "Failed to send message"}

    async def test_store_failure_reported(self, pipeline, hub, topic):
        store = AsyncMock()
        store.save.side_effect = RuntimeError("disk full")
        service = CommandService(store, pipeline, hub)

        await service.send("c1", ChatMessageRequest(content="hello"), _session())

        assert topic.get_nowait() == {"status": "error", "message": "Failed to send message"}

    async def test_unauthenticated_session_reported(self, command_service, topic):
        await command_service.send("c1", ChatMessageRequest(content="hello"), Session())
        assert topic.get_nowait() == {"status": "error", "message": "Token validation failed"}


class TestUpdate:
    async def test_author_can_update(
        self, command_service, message_store, alice_message, topic
    ):
        await command_service.update(
            "c1",
            MessageModifyRequest(chat_id=alice_message, req_message="edited"),
            _session(),
        )

        assert topic.get_nowait() == {
            "status": "success",
            "message": "Message updated successfully",
            "chatId": alice_message,
            "reqMessage": "edited",
        }
        assert (await message_store.find_by_id(alice_message)).content == "edited"

    async def test_non_author_forbidden(
        self, command_service, message_store, alice_message, topic
    ):
        await command_service.update(
            "c1",
            MessageModifyRequest(chat_id=alice_message, req_message="hacked"),
            _session("mallory@example.com"),
        )

        assert topic.get_nowait() == {"status": "error", "message": "Permission denied"}
        assert (await message_store.find_by_id(alice_message)).content == "hi"

    async def test_missing_message(self, command_service, topic):
        await command_service.update(
            "c1", MessageModifyRequest(chat_id="missing", req_message="x"), _session()
        )
        assert topic.get_nowait() == {"status": "error", "message": "Chat message not found"}

    async def test_message_from_other_channel_not_found(
        self, command_service, message_store, hub, alice_message
    ):
        other = await hub.subscribe("/topic/chat.channel.c2")
        await command_service.update(
            "c2", MessageModifyRequest(chat_id=alice_message, req_message="x"), _session()
        )
        assert other.get_nowait() == {"status": "error", "message": "Chat message not found"}
        assert (await message_store.find_by_id(alice_message)).content == "hi"

    async def test_empty_revision_rejected(self, command_service, alice_message, topic):
        await command_service.update(
            "c1", MessageModifyRequest(chat_id=alice_message, req_message=""), _session()
        )
        assert topic.get_nowait() == {"status": "error", "message": "Invalid message content"}

    async def test_store_failure_reported(self, message_store, pipeline, hub, alice_message, topic):
        message_store.update_body = AsyncMock(side_effect=RuntimeError("locked"))
        service = CommandService(message_store, pipeline, hub)

        await service.update(
            "c1", MessageModifyRequest(chat_id=alice_message, req_message="x"), _session()
        )

        assert topic.get_nowait() == {"status": "error", "message": "Failed to update message"}


class TestDelete:
    async def test_author_can_delete(
        self, command_service, message_store, alice_message, topic
    ):
        await command_service.delete(
            "c1", MessageDeleteRequest(chat_id=alice_message), _session()
        )

        assert topic.get_nowait() == {
            "status": "success",
            "message": "Message deleted",
            "deletedChatId": alice_message,
        }
        assert await message_store.find_by_id(alice_message) is None

    async def test_non_author_forbidden(
        self, command_service, message_store, alice_message, topic
    ):
        await command_service.delete(
            "c1", MessageDeleteRequest(chat_id=alice_message), _session("bob@example.com")
        )

        assert topic.get_nowait() == {"status": "error", "message": "Permission denied"}
        assert await message_store.find_by_id(alice_message) is not None

    async def test_missing_message(self, command_service, topic):
        await command_service.delete("c1", MessageDeleteRequest(chat_id="nope"), _session())
        assert topic.get_nowait() == {"status": "error", "message": "Chat message not found"}

    async def test_store_failure_reported(self, message_store, pipeline, hub, alice_message, topic):
        message_store.delete_by_id = AsyncMock(side_effect=RuntimeError("locked"))
        service = CommandService(message_store, pipeline, hub)

        await service.delete("c1", MessageDeleteRequest(chat_id=alice_message), _session())

        assert topic.get_nowait() == {"status": "error", "message": "Failed to delete message"}
