"""SSE 频道订阅路由

GET /api/stream/channel/{channel_id}: 只读订阅频道 topic 目的地，
?source=exchange 时订阅 broker 转发目的地。15 秒心跳保活。
"""

import asyncio
import json
from typing import Literal

from chatrelay.core.config import SSE_HEARTBEAT_INTERVAL
from chatrelay.core.models import exchange_destination, topic_destination
from fastapi import APIRouter, Depends, Query, Request
from sse_starlette.sse import EventSourceResponse

from ..deps import get_hub
from ..services.fanout import SUBSCRIPTION_DROPPED

router = APIRouter()


@router.get("/api/stream/channel/{channel_id}")
async def stream_channel(
    channel_id: str,
    request: Request,
    source: Literal["topic", "exchange"] = Query(default="topic"),
    hub=Depends(get_hub),
):
    """SSE 频道事件流

    每条 payload 作为一个 event: message 推送；
    命令响应（带 status 字段）作为 event: response 推送。
    """
    if source == "exchange":
        exchange = request.app.state.broker_config.exchange
        destination = exchange_destination(exchange, channel_id)
    else:
        destination = topic_destination(channel_id)

    async def event_generator():
        queue = await hub.subscribe(destination)
        try:
            while True:
                try:
                    payload = await asyncio.wait_for(
                        queue.get(), timeout=SSE_HEARTBEAT_INTERVAL
                    )
                    if payload is SUBSCRIPTION_DROPPED:
                        # 消费过慢被移出扇出，结束流由客户端重连
                        yield {"event": "dropped", "data": "{}"}
                        return
                    yield {
                        "event": "response" if "status" in payload else "message",
                        "data": json.dumps(payload, ensure_ascii=False),
                    }
                except TimeoutError:
                    yield {"comment": "heartbeat"}
        finally:
            await hub.unsubscribe(destination, queue)

    return EventSourceResponse(event_generator())
