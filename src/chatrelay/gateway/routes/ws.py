"""WebSocket 帧传输路由

GET /ws: 每条文本消息是一个 JSON 帧 {"command", "headers", "body"}。

- CONNECT: 授权关卡校验凭证，回复 CONNECTED
- SUBSCRIBE / UNSUBSCRIBE: 订阅本地目的地（/topic/... 或 /exchange/...）
- SEND: 授权关卡校验后交给命令工作池执行
- DISCONNECT: 回复 RECEIPT（如请求）后关闭

授权失败时发送 ERROR 帧并以 1008 关闭连接。

SEND 在接收循环内逐帧 await 执行，保证同一会话的命令按到达顺序生效；
代价是一次慢发布（最长为 broker 超时）会推迟该会话随后的
SUBSCRIBE / UNSUBSCRIBE 帧，已有订阅的推送不受影响。

订阅因消费过慢被扇出移除时，发送 ERROR 帧（带 subscription 头）并撤销该订阅，
客户端需重新 SUBSCRIBE。
"""

import asyncio
from typing import Any

import structlog
from chatrelay.core.config import (
    EXCHANGE_DESTINATION_PREFIX,
    TOPIC_DESTINATION_PREFIX,
)
from chatrelay.core.exceptions import InvalidArgument, Unauthorized
from chatrelay.core.models import Frame, FrameCommand
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from ..services.auth_gate import Session
from ..services.fanout import SUBSCRIPTION_DROPPED

log = structlog.get_logger()

router = APIRouter()

POLICY_VIOLATION = 1008
PROTOCOL_VERSION = "1.2"


class _Connection:
    """单个 WebSocket 连接的发送端与订阅表"""

    def __init__(self, websocket: WebSocket, session: Session) -> None:
        self.websocket = websocket
        self.session = session
        # subscription id -> (destination, queue, pump task)
        self.subscriptions: dict[str, tuple[str, asyncio.Queue, asyncio.Task]] = {}
        self._send_lock = asyncio.Lock()

    async def send_frame(
        self,
        command: FrameCommand,
        headers: dict[str, str] | None = None,
        body: Any = None,
    ) -> None:
        frame = Frame(command=command, headers=headers or {}, body=body)
        async with self._send_lock:
            await self.websocket.send_json(frame.model_dump(mode="json"))

    async def send_error(
        self,
        message: str,
        receipt: str | None = None,
        subscription: str | None = None,
    ) -> None:
        headers = {"message": message}
        if receipt:
            headers["receipt-id"] = receipt
        if subscription:
            headers["subscription"] = subscription
        await self.send_frame(FrameCommand.ERROR, headers, body=message)

    async def send_receipt(self, frame: Frame) -> None:
        receipt = frame.header("receipt")
        if receipt:
            await self.send_frame(FrameCommand.RECEIPT, {"receipt-id": receipt})

    async def pump(self, subscription_id: str, destination: str, queue: asyncio.Queue) -> None:
        """把订阅队列中的 payload 推给客户端，订阅被扇出移除时结束"""
        while True:
            payload = await queue.get()
            if payload is SUBSCRIPTION_DROPPED:
                self.subscriptions.pop(subscription_id, None)
                log.warning(
                    "subscription_dropped",
                    destination=destination,
                    subscription=subscription_id,
                )
                await self.send_error(
                    f"Subscription {subscription_id} dropped: consumer too slow",
                    subscription=subscription_id,
                )
                return
            await self.send_frame(
                FrameCommand.MESSAGE,
                {"destination": destination, "subscription": subscription_id},
                body=payload,
            )


async def _reject(conn: _Connection, error: Unauthorized) -> None:
    await conn.send_error(error.client_message)
    await conn.websocket.close(code=POLICY_VIOLATION, reason=str(error)[:120])


@router.websocket("/ws")
async def chat_socket(websocket: WebSocket):
    state = websocket.app.state
    await websocket.accept()

    session = Session()
    conn = _Connection(websocket, session)
    structlog.contextvars.bind_contextvars(session_id=session.session_id)
    log.info("session_opened")

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = Frame.model_validate_json(raw)
            except ValidationError:
                await conn.send_error("Malformed frame")
                continue

            try:
                state.auth_gate.inspect(frame, session)
                if not session.authenticated:
                    raise Unauthorized(f"{frame.command} before CONNECT")
            except Unauthorized as e:
                log.warning("session_rejected", command=frame.command, reason=str(e))
                await _reject(conn, e)
                return

            if frame.command == FrameCommand.CONNECT:
                await conn.send_frame(
                    FrameCommand.CONNECTED,
                    {
                        "version": PROTOCOL_VERSION,
                        "session": session.session_id,
                        "user-name": session.identity or "",
                    },
                )

            elif frame.command == FrameCommand.SUBSCRIBE:
                destination = frame.destination
                sub_id = frame.header("id") or destination
                if not destination or not destination.startswith(
                    (TOPIC_DESTINATION_PREFIX, EXCHANGE_DESTINATION_PREFIX)
                ):
                    await conn.send_error(f"Cannot subscribe to {destination}")
                    continue
                if sub_id in conn.subscriptions:
                    await conn.send_error(f"Duplicate subscription id {sub_id}")
                    continue
                queue = await state.hub.subscribe(destination)
                task = asyncio.create_task(conn.pump(sub_id, destination, queue))
                conn.subscriptions[sub_id] = (destination, queue, task)
                log.debug("subscription_added", destination=destination, subscription=sub_id)
                await conn.send_receipt(frame)

            elif frame.command == FrameCommand.UNSUBSCRIBE:
                sub_id = frame.header("id") or frame.destination
                entry = conn.subscriptions.pop(sub_id, None) if sub_id else None
                if entry is not None:
                    destination, queue, task = entry
                    task.cancel()
                    await asyncio.gather(task, return_exceptions=True)
                    await state.hub.unsubscribe(destination, queue)
                await conn.send_receipt(frame)

            elif frame.command == FrameCommand.SEND:
                try:
                    await state.command_pool.run(
                        state.command_router.dispatch(frame, session)
                    )
                except InvalidArgument as e:
                    await conn.send_error(str(e), receipt=frame.header("receipt"))
                    continue
                await conn.send_receipt(frame)

            elif frame.command == FrameCommand.DISCONNECT:
                await conn.send_receipt(frame)
                await websocket.close()
                return

            else:
                await conn.send_error(f"Unsupported command {frame.command}")

    except WebSocketDisconnect:
        log.info("session_disconnected")
    finally:
        pumps = []
        for destination, queue, task in list(conn.subscriptions.values()):
            task.cancel()
            pumps.append(task)
            await state.hub.unsubscribe(destination, queue)
        conn.subscriptions.clear()
        # 连接断开后 pump 的发送异常在此回收
        await asyncio.gather(*pumps, return_exceptions=True)
        log.info("session_closed", identity=session.identity)
        structlog.contextvars.unbind_contextvars("session_id")
