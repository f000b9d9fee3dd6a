"""TraceMiddleware -- 频道相关请求绑定 channel_id

从 /api/channels/{channel_id} 或 /api/stream/channel/{channel_id} 中提取。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response


def extract_channel_id(path: str) -> str | None:
    parts = [p for p in path.split("/") if p]
    for i, part in enumerate(parts):
        if part in ("channels", "channel") and i + 1 < len(parts):
            return parts[i + 1]
    return None


class TraceMiddleware(BaseHTTPMiddleware):
    """频道级追踪中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        channel_id = extract_channel_id(request.url.path)
        if channel_id:
            structlog.contextvars.bind_contextvars(channel_id=channel_id)

        return await call_next(request)
