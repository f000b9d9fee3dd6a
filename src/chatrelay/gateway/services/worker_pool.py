"""WorkerPool -- 有界并发工作池

每类工作（Consumer Relay 转发、命令处理）各持有一个实例，启动时创建，
关闭时有界等待在途任务完成。并发上限由 asyncio.Semaphore 约束。

两种提交方式：
- run(): 在调用方协程内执行，等待结果（保持调用方的顺序）
- submit(): 后台执行，按 owner 归组，便于单个频道拆除时只等待自己的任务
"""

import asyncio
from collections import defaultdict
from collections.abc import Coroutine
from typing import Any

import structlog

log = structlog.get_logger()


class WorkerPool:
    """有界并发工作池"""

    def __init__(self, name: str, max_concurrency: int) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.name = name
        self.max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: dict[str, set[asyncio.Task]] = defaultdict(set)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def run(self, coro: Coroutine[Any, Any, Any]) -> Any:
        """占用一个槽位执行 coro 并返回结果"""
        if self._closed:
            coro.close()
            raise RuntimeError(f"worker pool {self.name} is shut down")
        async with self._semaphore:
            return await coro

    async def submit(self, coro: Coroutine[Any, Any, Any], owner: str) -> asyncio.Task:
        """等待空闲槽位后在后台执行 coro

        槽位耗尽时调用方在此等待，形成背压。
        """
        if self._closed:
            coro.close()
            raise RuntimeError(f"worker pool {self.name} is shut down")
        await self._semaphore.acquire()
        task = asyncio.create_task(self._guard(coro, owner))
        self._tasks[owner].add(task)
        task.add_done_callback(lambda t: self._release(t, owner))
        return task

    def in_flight(self, owner: str | None = None) -> int:
        if owner is not None:
            return len(self._tasks.get(owner, set()))
        return sum(len(tasks) for tasks in self._tasks.values())

    async def drain(self, owner: str | None = None, timeout: float = 5.0) -> int:
        """等待在途任务完成，超时后取消剩余任务

        Args:
            owner: 只等待该 owner 的任务；None 表示全部
            timeout: 最长等待时间（秒）

        Returns:
            被强制取消的任务数量
        """
        if owner is not None:
            pending = set(self._tasks.get(owner, set()))
        else:
            pending = {t for tasks in self._tasks.values() for t in tasks}
        if not pending:
            return 0

        _, still_pending = await asyncio.wait(pending, timeout=max(timeout, 0))
        for task in still_pending:
            task.cancel()
        if still_pending:
            await asyncio.gather(*still_pending, return_exceptions=True)
            log.warning(
                "worker_pool_drain_timeout",
                pool=self.name,
                owner=owner,
                cancelled=len(still_pending),
            )
        return len(still_pending)

    async def shutdown(self, timeout: float = 5.0) -> int:
        """停止接收新任务并有界等待全部在途任务"""
        self._closed = True
        return await self.drain(timeout=timeout)

    async def _guard(self, coro: Coroutine[Any, Any, Any], owner: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(
                "worker_task_failed",
                pool=self.name,
                owner=owner,
                error_type=type(e).__name__,
                error=str(e),
            )

    def _release(self, task: asyncio.Task, owner: str) -> None:
        self._semaphore.release()
        tasks = self._tasks.get(owner)
        if tasks is not None:
            tasks.discard(task)
            if not tasks:
                del self._tasks[owner]
