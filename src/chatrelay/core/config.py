"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、指纹去重窗口、工作池大小、频道命名前缀等可配置常量。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("CHATRELAY_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径（消息持久化）"""
    return os.environ.get(
        "CHATRELAY_DB_PATH",
        str(_get_base_dir() / "sqlite" / "chatrelay.db"),
    )


# 频道资源命名前缀：队列名与 routing key 均为 chat.channel.<channel_id>
CHANNEL_PREFIX: str = "chat.channel."

# 本地订阅目的地前缀
TOPIC_DESTINATION_PREFIX: str = "/topic/"
EXCHANGE_DESTINATION_PREFIX: str = "/exchange/"

# 客户端应用目的地前缀（SEND 帧）
APP_DESTINATION_PREFIX: str = "/pub/"

# 指纹缓存 key 前缀：chat:channel:<channel_id>:messages
FINGERPRINT_KEY_PREFIX: str = "chat:channel:"

# 指纹去重窗口（秒）
FINGERPRINT_TTL_S: int = int(os.environ.get("CHATRELAY_FINGERPRINT_TTL_S", "300"))

# Consumer Relay 转发工作池并发上限（所有频道共享）
RELAY_POOL_SIZE: int = int(os.environ.get("CHATRELAY_RELAY_POOL_SIZE", "50"))

# 命令处理工作池并发上限
COMMAND_POOL_SIZE: int = int(os.environ.get("CHATRELAY_COMMAND_POOL_SIZE", "100"))

# 频道拆除时等待在途转发完成的宽限期（秒）
RELAY_GRACE_PERIOD_S: float = float(
    os.environ.get("CHATRELAY_RELAY_GRACE_PERIOD_S", "5")
)

# 订阅者队列长度上限（满则视为慢订阅者并剔除）
SUBSCRIBER_QUEUE_MAXSIZE: int = int(
    os.environ.get("CHATRELAY_SUBSCRIBER_QUEUE_MAXSIZE", "256")
)

# SSE 心跳间隔（秒）
SSE_HEARTBEAT_INTERVAL: int = int(
    os.environ.get("CHATRELAY_SSE_HEARTBEAT_INTERVAL", "15")
)

# 日志中消息正文预览截断长度
MESSAGE_PREVIEW_LENGTH: int = 80
