"""LoggingMiddleware -- HTTP 请求与 WebSocket 连接的日志上下文

纯 ASGI 中间件（BaseHTTPMiddleware 不处理 websocket scope）：
- http: 生成 request_id，记录 request_started / request_completed（含耗时），
  响应头带 X-Request-ID
- websocket: 生成 connection_id，记录握手结果与关闭码，
  握手响应头同样带 X-Request-ID；会话内日志共享该上下文
"""

import time

import structlog
from starlette.types import ASGIApp, Message, Receive, Scope, Send
from ulid import ULID

REQUEST_ID_HEADER = b"x-request-id"


class LoggingMiddleware:
    """请求 / 连接级日志中间件"""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            await self._handle_http(scope, receive, send)
        elif scope["type"] == "websocket":
            await self._handle_websocket(scope, receive, send)
        else:
            await self.app(scope, receive, send)

    async def _handle_http(self, scope: Scope, receive: Receive, send: Send) -> None:
        request_id = str(ULID())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=scope["method"],
            path=scope["path"],
        )
        log = structlog.get_logger()
        await log.ainfo("request_started")

        started = time.monotonic()
        status_code = 500

        async def send_with_request_id(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                headers = list(message.get("headers", []))
                headers.append((REQUEST_ID_HEADER, request_id.encode()))
                message = {**message, "headers": headers}
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            await log.ainfo(
                "request_completed",
                status_code=status_code,
                duration_ms=round((time.monotonic() - started) * 1000, 1),
            )

    async def _handle_websocket(self, scope: Scope, receive: Receive, send: Send) -> None:
        connection_id = str(ULID())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            connection_id=connection_id,
            path=scope["path"],
        )
        log = structlog.get_logger()

        started = time.monotonic()
        close_code: int | None = None

        async def send_with_connection_id(message: Message) -> None:
            nonlocal close_code
            if message["type"] == "websocket.accept":
                headers = list(message.get("headers") or [])
                headers.append((REQUEST_ID_HEADER, connection_id.encode()))
                message = {**message, "headers": headers}
                await log.ainfo("websocket_accepted")
            elif message["type"] == "websocket.close":
                close_code = message.get("code", 1000)
            await send(message)

        try:
            await self.app(scope, receive, send_with_connection_id)
        finally:
            await log.ainfo(
                "websocket_finished",
                close_code=close_code,
                duration_ms=round((time.monotonic() - started) * 1000, 1),
            )
