"""频道管理路由

POST /api/channels/{channel_id}: 确保频道 broker 资源就绪
DELETE /api/channels/{channel_id}: 拆除频道
GET /api/channels: 本实例内的活跃频道
GET /api/channels/{channel_id}/messages: 频道最近消息
"""

from chatrelay.core.exceptions import ResourceError
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from ..deps import get_channel_manager, get_store_group

router = APIRouter()


def _resource_error_response(e: ResourceError) -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={
            "error": {
                "code": "BROKER_RESOURCE_ERROR",
                "message": str(e),
            }
        },
    )


@router.get("/api/channels")
async def list_channels(channel_manager=Depends(get_channel_manager)):
    return {
        "channels": [
            info.model_dump(mode="json") for info in channel_manager.list_channels()
        ]
    }


@router.post("/api/channels/{channel_id}")
async def ensure_channel(channel_id: str, channel_manager=Depends(get_channel_manager)):
    try:
        handle = await channel_manager.ensure_channel(channel_id)
    except ResourceError as e:
        return _resource_error_response(e)
    return handle.info().model_dump(mode="json")


@router.delete("/api/channels/{channel_id}")
async def teardown_channel(channel_id: str, channel_manager=Depends(get_channel_manager)):
    try:
        had_relay = await channel_manager.teardown_channel(channel_id)
    except ResourceError as e:
        return _resource_error_response(e)
    return {"channel_id": channel_id, "torn_down": True, "had_relay": had_relay}


@router.get("/api/channels/{channel_id}/messages")
async def list_messages(
    channel_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    store_group=Depends(get_store_group),
):
    messages = await store_group.message_store.list_for_channel(channel_id, limit=limit)
    return {
        "channel_id": channel_id,
        "messages": [m.to_payload() for m in messages],
    }
