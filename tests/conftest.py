"""全局 pytest 配置 -- 内存后端 + 临时 SQLite 数据库 + JWT 签发 fixture"""

import base64
import hashlib
import hmac
import json
import time
from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio
from chatrelay.broker import MemoryBrokerGateway, MemoryFingerprintCache
from chatrelay.core.store import SqliteMessageStore
from chatrelay.gateway.services.channel_manager import ChannelLifecycleManager
from chatrelay.gateway.services.command_service import CommandService
from chatrelay.gateway.services.fanout import SubscriberHub
from chatrelay.gateway.services.publisher import PublishPipeline
from chatrelay.gateway.services.worker_pool import WorkerPool

EXCHANGE = "chat.exchange"
JWT_SECRET_B64 = base64.b64encode(b"chatrelay-test-secret-0123456789").decode()


def _b64u(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def sign_token(
    claims: dict,
    secret_b64: str = JWT_SECRET_B64,
    alg: str = "HS256",
) -> str:
    """签发测试用 HMAC JWT"""
    digest = {"HS256": hashlib.sha256, "HS384": hashlib.sha384, "HS512": hashlib.sha512}[alg]
    header_b64 = _b64u(json.dumps({"alg": alg, "typ": "JWT"}).encode())
    claims_b64 = _b64u(json.dumps(claims).encode())
    signing_input = f"{header_b64}.{claims_b64}".encode()
    signature = hmac.new(base64.b64decode(secret_b64), signing_input, digest).digest()
    return f"{header_b64}.{claims_b64}.{_b64u(signature)}"


@pytest.fixture
def jwt_secret() -> str:
    return JWT_SECRET_B64


@pytest.fixture
def sign_jwt() -> Callable[..., str]:
    """签发任意 claims 的 token（可指定密钥与算法）"""
    return sign_token


@pytest.fixture
def make_token() -> Callable[..., str]:
    """按 email 签发一小时有效的 token"""

    def _make(email: str = "alice@example.com", **claims) -> str:
        payload = {"email": email, "exp": int(time.time()) + 3600, **claims}
        return sign_token(payload)

    return _make


@pytest_asyncio.fixture
async def db_conn(tmp_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """提供已初始化的临时 SQLite 数据库连接"""
    from chatrelay.core.store.sqlite_init import init_db

    conn = await aiosqlite.connect(str(tmp_path / "test.db"))
    await init_db(conn)
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def message_store(db_conn: aiosqlite.Connection) -> SqliteMessageStore:
    return SqliteMessageStore(db_conn)


@pytest.fixture
def broker() -> MemoryBrokerGateway:
    return MemoryBrokerGateway()


@pytest.fixture
def cache() -> MemoryFingerprintCache:
    return MemoryFingerprintCache()


@pytest.fixture
def hub() -> SubscriberHub:
    return SubscriberHub(exchange=EXCHANGE)


@pytest_asyncio.fixture
async def relay_pool() -> AsyncGenerator[WorkerPool, None]:
    pool = WorkerPool("relay", 4)
    yield pool
    await pool.shutdown(timeout=1.0)


@pytest_asyncio.fixture
async def channel_manager(
    broker, cache, hub, relay_pool
) -> AsyncGenerator[ChannelLifecycleManager, None]:
    manager = ChannelLifecycleManager(
        broker,
        cache,
        hub,
        relay_pool,
        exchange=EXCHANGE,
        grace_period_s=1.0,
    )
    yield manager
    await manager.shutdown()


@pytest.fixture
def pipeline(channel_manager, broker, cache, hub) -> PublishPipeline:
    return PublishPipeline(channel_manager, broker, cache, hub, exchange=EXCHANGE)


@pytest.fixture
def command_service(message_store, pipeline, hub) -> CommandService:
    return CommandService(message_store, pipeline, hub)
