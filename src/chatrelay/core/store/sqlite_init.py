"""SQLite 数据库初始化

PRAGMA 配置 + messages 表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# messages 表 DDL
_MESSAGES_DDL = """
CREATE TABLE IF NOT EXISTS messages (
    chat_id       TEXT PRIMARY KEY,
    channel_id    TEXT NOT NULL,
    email         TEXT NOT NULL,
    writer        TEXT NOT NULL DEFAULT '',
    content       TEXT,
    file_url      TEXT,
    channel_kind  TEXT NOT NULL DEFAULT 'TEXT',
    created_at    TEXT NOT NULL,
    updated_at    TEXT
);
"""

_MESSAGES_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_messages_channel_id ON messages(channel_id, created_at);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    await conn.execute(_MESSAGES_DDL)
    for idx_sql in _MESSAGES_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()
