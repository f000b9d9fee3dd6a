"""依赖注入模块 -- 通过 FastAPI Depends 注入 app.state 上的服务实例

实例在 lifespan 中创建与清理。
"""

from chatrelay.core.store import StoreGroup
from fastapi import Request

from .services.channel_manager import ChannelLifecycleManager
from .services.fanout import SubscriberHub


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_hub(request: Request) -> SubscriberHub:
    """从 app.state 获取 SubscriberHub 实例"""
    return request.app.state.hub


def get_channel_manager(request: Request) -> ChannelLifecycleManager:
    """从 app.state 获取 ChannelLifecycleManager 实例"""
    return request.app.state.channel_manager
