"""MessageStore SQLite 实现

chat_id 使用 ULID 格式，时间有序。
每个写操作自行提交事务，失败时回滚。
"""

from datetime import UTC, datetime

import aiosqlite
from ulid import ULID

from ..models.enums import ChannelKind
from ..models.message import ChatMessage, MessageDraft


class SqliteMessageStore:
    """MessageStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def save(self, draft: MessageDraft) -> str:
        """保存消息并分配 chat_id"""
        chat_id = str(ULID())
        try:
            await self._conn.execute(
                """
                INSERT INTO messages (chat_id, channel_id, email, writer, content,
                                      file_url, channel_kind, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    chat_id,
                    draft.channel_id,
                    draft.email,
                    draft.writer,
                    draft.content,
                    draft.file_url,
                    draft.channel_kind.value,
                    draft.created_at.isoformat(),
                ),
            )
            await self._conn.commit()
        except Exception:
            await self._conn.rollback()
            raise
        return chat_id

    async def find_by_id(self, chat_id: str) -> ChatMessage | None:
        cursor = await self._conn.execute(
            "SELECT * FROM messages WHERE chat_id = ?",
            (chat_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_message(row) if row else None

    async def list_for_channel(self, channel_id: str, limit: int = 50) -> list[ChatMessage]:
        """查询频道最近的消息，按创建时间正序"""
        cursor = await self._conn.execute(
            """
            SELECT * FROM (
                SELECT * FROM messages WHERE channel_id = ?
                ORDER BY created_at DESC LIMIT ?
            ) ORDER BY created_at ASC
            """,
            (channel_id, limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    async def update_body(self, chat_id: str, content: str) -> None:
        try:
            await self._conn.execute(
                "UPDATE messages SET content = ?, updated_at = ? WHERE chat_id = ?",
                (content, datetime.now(UTC).isoformat(), chat_id),
            )
            await self._conn.commit()
        except Exception:
            await self._conn.rollback()
            raise

    async def delete_by_id(self, chat_id: str) -> None:
        try:
            await self._conn.execute(
                "DELETE FROM messages WHERE chat_id = ?",
                (chat_id,),
            )
            await self._conn.commit()
        except Exception:
            await self._conn.rollback()
            raise

    @staticmethod
    def _row_to_message(row: aiosqlite.Row) -> ChatMessage:
        """将数据库行转换为 ChatMessage 模型"""
        return ChatMessage(
            chat_id=row[0],
            channel_id=row[1],
            email=row[2],
            writer=row[3],
            content=row[4],
            file_url=row[5],
            channel_kind=ChannelKind(row[6]),
            created_at=datetime.fromisoformat(row[7]),
        )
