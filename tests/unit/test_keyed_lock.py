"""Unit tests for per-key asyncio locks."""

import asyncio

import pytest

from multicluster_service_account.utils.keyed_lock import KeyedLock


class TestKeyedLock:
    """Same keys serialize, distinct keys run in parallel."""

    @pytest.mark.asyncio
    async def test_same_key_serialized(self):
        locks = KeyedLock()
        active = 0
        peak = 0

        async def work():
            nonlocal active, peak
            async with locks.hold("a"):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(work() for _ in range(5)))
        assert peak == 1

    @pytest.mark.asyncio
    async def test_distinct_keys_parallel(self):
        locks = KeyedLock()
        entered = asyncio.Event()
        release = asyncio.Event()

        async def hold_a():
            async with locks.hold("a"):
                entered.set()
                await release.wait()

        task = asyncio.create_task(hold_a())
        await entered.wait()

        # "b" is not blocked by "a"
        async with locks.hold("b"):
            assert locks.locked("a")
            assert locks.locked("b")

        release.set()
        await task

    @pytest.mark.asyncio
    async def test_released_key_dropped(self):
        locks = KeyedLock()
        async with locks.hold("a"):
            assert "a" in locks
        assert "a" not in locks
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_lock_kept_while_awaited(self):
        locks = KeyedLock()
        order = []
        release = asyncio.Event()

        async def first():
            async with locks.hold("a"):
                order.append("first")
                await release.wait()

        async def second():
            async with locks.hold("a"):
                order.append("second")

        first_task = asyncio.create_task(first())
        await asyncio.sleep(0)
        second_task = asyncio.create_task(second())
        await asyncio.sleep(0)

        assert len(locks) == 1
        release.set()
        await asyncio.gather(first_task, second_task)

        assert order == ["first", "second"]
        assert len(locks) == 0
