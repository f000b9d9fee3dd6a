"""WorkerPool 测试 -- 并发上限、按 owner 排空、关闭"""

import asyncio

import pytest
from chatrelay.gateway.services.worker_pool import WorkerPool


class TestWorkerPool:
    async def test_run_returns_result(self):
        pool = WorkerPool("test", 2)

        async def work():
            return 42

        assert await pool.run(work()) == 42

    async def test_concurrency_is_bounded(self):
        pool = WorkerPool("test", 2)
        active = 0
        peak = 0

        async def work():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        await asyncio.gather(*(pool.run(work()) for _ in range(6)))
        assert peak == 2

    async def test_submit_tracks_owner(self):
        pool = WorkerPool("test", 4)
        release = asyncio.Event()

        async def work():
            await release.wait()

        await pool.submit(work(), owner="a")
        await pool.submit(work(), owner="b")
        assert pool.in_flight("a") == 1
        assert pool.in_flight() == 2

        release.set()
        assert await pool.drain(owner="a", timeout=1) == 0
        assert pool.in_flight("a") == 0
        await pool.shutdown(timeout=1)

    async def test_drain_cancels_after_timeout(self):
        pool = WorkerPool("test", 2)

        async def hang():
            await asyncio.Event().wait()

        await pool.submit(hang(), owner="a")
        cancelled = await pool.drain(owner="a", timeout=0.05)

        assert cancelled == 1
        assert pool.in_flight() == 0

    async def test_failed_task_releases_slot(self):
        pool = WorkerPool("test", 1)

        async def boom():
            raise RuntimeError("boom")

        task = await pool.submit(boom(), owner="a")
        await task
        # 槽位已释放，下一次 run 不会阻塞
        assert await asyncio.wait_for(pool.run(asyncio.sleep(0, result="ok")), 1) == "ok"

    async def test_shutdown_rejects_new_work(self):
        pool = WorkerPool("test", 1)
        await pool.shutdown(timeout=0.1)
        assert pool.closed
        with pytest.raises(RuntimeError):
            await pool.run(asyncio.sleep(0))
        with pytest.raises(RuntimeError):
            await pool.submit(asyncio.sleep(0), owner="a")

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            WorkerPool("test", 0)
