"""RabbitBrokerGateway -- 基于 pika 的 RabbitMQ 能力封装

pika BlockingConnection 不是线程安全的：
- 管理/发布操作共用一条连接，在工作线程中串行执行（threading.Lock），
  外层用 asyncio.wait_for 施加超时，超时或 AMQP 异常统一转换为
  DeliveryFailure / ResourceError。
- 每个队列订阅独占一条连接和一个消费线程，投递通过
  loop.call_soon_threadsafe 交给事件循环，消费方取走后再回到连接线程 ack，
  未 ack 数量受 prefetch 约束。
"""

import asyncio
import threading
from collections.abc import Callable
from typing import Any

import pika
import pika.exceptions
import structlog

from chatrelay.core.exceptions import DeliveryFailure, ResourceError

log = structlog.get_logger()

# 连接类异常（触发连接重建）
_BROKER_ERROR_TYPES = (pika.exceptions.AMQPError, OSError)

_END = object()


def _connection_params(amqp_url: str, timeout_s: float) -> pika.URLParameters:
    params = pika.URLParameters(amqp_url)
    params.socket_timeout = timeout_s
    params.blocked_connection_timeout = timeout_s * 6
    params.heartbeat = 60
    return params


class RabbitSubscription:
    """单个队列的消费者 -- 独立连接 + 消费线程"""

    def __init__(
        self,
        params: pika.URLParameters,
        queue: str,
        prefetch: int,
        timeout_s: float,
    ) -> None:
        self.queue = queue
        self._params = params
        self._prefetch = prefetch
        self._timeout_s = timeout_s
        self._loop: asyncio.AbstractEventLoop | None = None
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._ready = threading.Event()
        # 启动超时与消费线程就绪之间的交接
        self._handoff = threading.Lock()
        self._startup_error: Exception | None = None
        self._connection: pika.BlockingConnection | None = None
        self._channel = None
        self._closed = False
        self._thread = threading.Thread(
            target=self._run,
            name=f"relay-consumer-{queue}",
            daemon=True,
        )

    async def start(self) -> None:
        """启动消费线程并等待 basic_consume 就绪

        超时后订阅被放弃：消费线程在连接建立后发现已关闭，
        不再进入 start_consuming，直接关闭连接退出。
        """
        self._loop = asyncio.get_running_loop()
        self._thread.start()
        await asyncio.to_thread(self._ready.wait, self._timeout_s)
        with self._handoff:
            abandoned = not self._ready.is_set()
            if abandoned:
                self._closed = True
        if abandoned:
            log.warning(
                "consumer_start_abandoned",
                queue=self.queue,
                timeout_s=self._timeout_s,
            )
            raise ResourceError(
                f"consumer for {self.queue} not ready after {self._timeout_s}s"
            )
        if self._startup_error is not None:
            self._closed = True
            raise ResourceError(
                f"failed to consume {self.queue}: {self._startup_error}",
                self._startup_error,
            )

    def __aiter__(self) -> "RabbitSubscription":
        return self

    async def __anext__(self) -> bytes:
        item = await self._inbox.get()
        if item is _END:
            raise StopAsyncIteration
        delivery_tag, body = item
        self._ack(delivery_tag)
        return body

    async def close(self) -> None:
        """停止接收新投递；已在 inbox 中的消息仍会被迭代取走"""
        if self._closed:
            return
        self._closed = True
        connection = self._connection
        if connection is not None and connection.is_open:
            try:
                connection.add_callback_threadsafe(self._stop_consuming)
            except _BROKER_ERROR_TYPES as e:
                log.debug("consumer_stop_skipped", queue=self.queue, error=str(e))
        if self._thread.is_alive():
            await asyncio.to_thread(self._thread.join, self._timeout_s)

    def _stop_consuming(self) -> None:
        if self._channel is not None and self._channel.is_open:
            self._channel.stop_consuming()

    def _ack(self, delivery_tag: int) -> None:
        connection = self._connection
        if connection is None or not connection.is_open:
            return
        try:
            connection.add_callback_threadsafe(
                lambda: self._channel.basic_ack(delivery_tag=delivery_tag)
            )
        except _BROKER_ERROR_TYPES as e:
            # 连接已断开：未 ack 的消息会由 broker 重新投递
            log.warning("consumer_ack_failed", queue=self.queue, error=str(e))

    def _run(self) -> None:
        try:
            self._connection = pika.BlockingConnection(self._params)
            if self._closed:
                # 连接建立时 start 已超时，不再注册消费者
                log.info("consumer_discarded_after_timeout", queue=self.queue)
                self._close_connection()
                return
            self._channel = self._connection.channel()
            self._channel.basic_qos(prefetch_count=self._prefetch)
            self._channel.basic_consume(
                queue=self.queue,
                on_message_callback=self._on_message,
            )
        except Exception as e:
            self._startup_error = e
            self._ready.set()
            self._close_connection()
            return

        with self._handoff:
            abandoned = self._closed
            if not abandoned:
                self._ready.set()
        if abandoned:
            # start 已超时返回，没有消费方读取 inbox
            log.info("consumer_discarded_after_timeout", queue=self.queue)
            self._close_connection()
            return

        try:
            self._channel.start_consuming()
        except _BROKER_ERROR_TYPES as e:
            log.error("consumer_connection_lost", queue=self.queue, error=str(e))
        finally:
            self._close_connection()
            self._loop.call_soon_threadsafe(self._inbox.put_nowait, _END)

    def _on_message(self, _ch, method, _properties, body: bytes) -> None:
        self._loop.call_soon_threadsafe(
            self._inbox.put_nowait, (method.delivery_tag, body)
        )

    def _close_connection(self) -> None:
        if self._connection is not None and self._connection.is_open:
            try:
                self._connection.close()
            except _BROKER_ERROR_TYPES as e:
                log.debug("consumer_close_failed", queue=self.queue, error=str(e))


class RabbitBrokerGateway:
    """RabbitMQ topic exchange 能力封装"""

    def __init__(
        self,
        amqp_url: str,
        exchange: str = "chat.exchange",
        timeout_s: float = 5,
        prefetch: int = 500,
    ) -> None:
        """
        Args:
            amqp_url: AMQP 连接地址
            exchange: 启动时声明的 topic exchange（durable）
            timeout_s: 单次 broker 操作超时（秒）
            prefetch: 订阅默认 prefetch
        """
        self._params = _connection_params(amqp_url, timeout_s)
        self._exchange = exchange
        self._timeout_s = timeout_s
        self._prefetch = prefetch
        self._lock = threading.Lock()
        self._connection: pika.BlockingConnection | None = None
        self._channel = None

    async def declare_queue(self, name: str, durable: bool = True) -> None:
        await self._call(
            lambda ch: ch.queue_declare(queue=name, durable=durable),
            ResourceError,
            f"declare queue {name}",
        )

    async def bind(self, queue: str, exchange: str, routing_key: str) -> None:
        await self._call(
            lambda ch: ch.queue_bind(queue=queue, exchange=exchange, routing_key=routing_key),
            ResourceError,
            f"bind {queue} to {exchange}/{routing_key}",
        )

    async def delete_queue(self, name: str) -> None:
        await self._call(
            lambda ch: ch.queue_delete(queue=name),
            ResourceError,
            f"delete queue {name}",
        )

    async def publish(self, exchange: str, routing_key: str, payload: bytes) -> None:
        properties = pika.BasicProperties(
            content_type="application/json",
            delivery_mode=2,
        )
        await self._call(
            lambda ch: ch.basic_publish(
                exchange=exchange,
                routing_key=routing_key,
                body=payload,
                properties=properties,
            ),
            DeliveryFailure,
            f"publish to {exchange}/{routing_key}",
        )

    async def subscribe(self, queue: str, prefetch: int | None = None) -> RabbitSubscription:
        subscription = RabbitSubscription(
            self._params,
            queue,
            prefetch or self._prefetch,
            self._timeout_s,
        )
        await subscription.start()
        return subscription

    async def ping(self) -> bool:
        try:
            await self._call(lambda ch: None, ResourceError, "ping")
        except ResourceError:
            return False
        return True

    async def close(self) -> None:
        await asyncio.to_thread(self._close_locked)

    async def _call(
        self,
        op: Callable[[Any], Any],
        error_cls: type[DeliveryFailure] | type[ResourceError],
        what: str,
    ) -> Any:
        """在工作线程中执行 broker 操作，施加超时并转换异常"""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._run_locked, op),
                timeout=self._timeout_s,
            )
        except TimeoutError as e:
            log.error("broker_operation_timeout", operation=what, timeout_s=self._timeout_s)
            raise error_cls(f"{what} timed out after {self._timeout_s}s", e) from e
        except _BROKER_ERROR_TYPES as e:
            log.error("broker_operation_failed", operation=what, error=str(e))
            raise error_cls(f"{what} failed: {e}", e) from e

    def _run_locked(self, op: Callable[[Any], Any]) -> Any:
        with self._lock:
            try:
                return op(self._ensure_channel())
            except _BROKER_ERROR_TYPES:
                # 通道或连接已不可用，下次调用重建
                self._reset()
                raise

    def _ensure_channel(self):
        if self._connection is None or not self._connection.is_open:
            self._connection = pika.BlockingConnection(self._params)
            self._channel = None
        if self._channel is None or not self._channel.is_open:
            self._channel = self._connection.channel()
            self._channel.exchange_declare(
                exchange=self._exchange,
                exchange_type="topic",
                durable=True,
            )
        return self._channel

    def _reset(self) -> None:
        connection, self._connection, self._channel = self._connection, None, None
        if connection is not None and connection.is_open:
            try:
                connection.close()
            except _BROKER_ERROR_TYPES as e:
                log.debug("broker_connection_close_failed", error=str(e))

    def _close_locked(self) -> None:
        with self._lock:
            self._reset()
