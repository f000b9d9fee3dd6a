"""FastAPI 应用主文件

app 创建 + lifespan 管理：按构造参数显式装配
消息持久化、消息代理、指纹缓存、凭证校验、工作池与各服务；
关闭时停止消费者、有界排空工作池并释放连接。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from chatrelay.broker import (
    JwtCredentialValidator,
    create_broker_gateway,
    create_fingerprint_cache,
    load_broker_config,
)
from chatrelay.core.config import (
    COMMAND_POOL_SIZE,
    FINGERPRINT_TTL_S,
    RELAY_GRACE_PERIOD_S,
    RELAY_POOL_SIZE,
    get_db_path,
)
from chatrelay.core.store import create_store_group
from fastapi import FastAPI

from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import channels, health, stream, ws
from .services.auth_gate import AuthorizationGate
from .services.channel_manager import ChannelLifecycleManager
from .services.command_service import CommandService
from .services.fanout import SubscriberHub
from .services.publisher import PublishPipeline
from .services.router import CommandRouter
from .services.worker_pool import WorkerPool

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理"""
    broker_config = load_broker_config()
    app.state.broker_config = broker_config

    # 凭证校验必须可用，密钥缺失时拒绝启动
    validator = JwtCredentialValidator(
        broker_config.jwt_secret.get_secret_value(),
        identity_claim=broker_config.jwt_identity_claim,
    )

    # 初始化 Store
    store_group = await create_store_group(get_db_path())
    app.state.store_group = store_group

    broker = create_broker_gateway(broker_config)
    cache = create_fingerprint_cache(broker_config)
    app.state.broker = broker
    app.state.cache = cache

    hub = SubscriberHub(exchange=broker_config.exchange)
    relay_pool = WorkerPool("relay", RELAY_POOL_SIZE)
    command_pool = WorkerPool("command", COMMAND_POOL_SIZE)
    app.state.hub = hub
    app.state.relay_pool = relay_pool
    app.state.command_pool = command_pool

    channel_manager = ChannelLifecycleManager(
        broker,
        cache,
        hub,
        relay_pool,
        exchange=broker_config.exchange,
        prefetch=broker_config.prefetch,
        grace_period_s=RELAY_GRACE_PERIOD_S,
    )
    pipeline = PublishPipeline(
        channel_manager,
        broker,
        cache,
        hub,
        exchange=broker_config.exchange,
        ttl_s=FINGERPRINT_TTL_S,
    )
    command_service = CommandService(store_group.message_store, pipeline, hub)
    app.state.channel_manager = channel_manager
    app.state.pipeline = pipeline
    app.state.auth_gate = AuthorizationGate(validator)
    app.state.command_router = CommandRouter(command_service, hub)

    log.info(
        "chatrelay_started",
        broker_mode=broker_config.broker_mode,
        cache_mode=broker_config.cache_mode,
        exchange=broker_config.exchange,
        relay_pool_size=RELAY_POOL_SIZE,
        command_pool_size=COMMAND_POOL_SIZE,
    )

    yield

    # 关闭：先停命令入口，再停消费者，最后释放连接
    await command_pool.shutdown(timeout=RELAY_GRACE_PERIOD_S)
    await channel_manager.shutdown()
    await relay_pool.shutdown(timeout=RELAY_GRACE_PERIOD_S)
    await broker.close()
    await cache.close()
    await store_group.conn.close()
    log.info("chatrelay_stopped")


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="ChatRelay Gateway",
        version="0.1.0",
        description="频道聊天消息转发服务",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    # 初始化日志
    setup_logging()
    setup_logfire(app)

    # 注册路由
    app.include_router(ws.router, tags=["ws"])
    app.include_router(channels.router, tags=["channels"])
    app.include_router(stream.router, tags=["stream"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
