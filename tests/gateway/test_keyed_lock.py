"""KeyedLock 测试"""

import asyncio

import pytest
from chatrelay.gateway.services.keyed_lock import KeyedLock


class TestKeyedLock:
    async def test_entry_removed_after_release(self):
        locks = KeyedLock()
        async with locks.hold("c1"):
            assert "c1" in locks
            assert locks.locked("c1")
        assert len(locks) == 0
        assert not locks.locked("c1")

    async def test_entry_kept_while_waiters_remain(self):
        locks = KeyedLock()
        order: list[str] = []
        release = asyncio.Event()

        async def first():
            async with locks.hold("c1"):
                order.append("first")
                await release.wait()

        async def second():
            async with locks.hold("c1"):
                order.append("second")

        t1 = asyncio.create_task(first())
        await asyncio.sleep(0)
        t2 = asyncio.create_task(second())
        await asyncio.sleep(0.01)

        assert order == ["first"]
        release.set()
        await asyncio.gather(t1, t2)

        assert order == ["first", "second"]
        assert len(locks) == 0

    async def test_entry_removed_when_holder_fails(self):
        locks = KeyedLock()
        with pytest.raises(RuntimeError):
            async with locks.hold("c1"):
                raise RuntimeError("boom")
        assert len(locks) == 0

    async def test_different_keys_do_not_block(self):
        locks = KeyedLock()
        async with locks.hold("a"):
            await asyncio.wait_for(self._enter(locks, "b"), timeout=0.5)

    @staticmethod
    async def _enter(locks: KeyedLock, key: str) -> None:
        async with locks.hold(key):
            pass
