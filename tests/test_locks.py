"""Tests for per-key asyncio locks."""

import asyncio

import pytest

from lardigital.infra.locks import KeyedLocks


class TestKeyedLocks:
    @pytest.mark.asyncio
    async def test_same_key_runs_in_arrival_order(self):
        locks = KeyedLocks()
        order = []

        async def work(name, delay):
            async with locks.hold("actor:1"):
                order.append(f"{name}-start")
                await asyncio.sleep(delay)
                order.append(f"{name}-end")

        await asyncio.gather(work("a", 0.02), work("b", 0), work("c", 0))

        assert order == ["a-start", "a-end", "b-start", "b-end", "c-start", "c-end"]

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self):
        locks = KeyedLocks()
        started = asyncio.Event()

        async def holder():
            async with locks.hold("actor:1"):
                started.set()
                await asyncio.sleep(0.05)

        task = asyncio.ensure_future(holder())
        await started.wait()

        async with locks.hold("actor:2"):
            assert locks.is_locked("actor:1")
        await task

    @pytest.mark.asyncio
    async def test_entries_are_dropped_when_idle(self):
        locks = KeyedLocks()

        async with locks.hold("actor:1"):
            assert len(locks) == 1

        assert len(locks) == 0
        assert not locks.is_locked("actor:1")

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        locks = KeyedLocks()

        with pytest.raises(RuntimeError):
            async with locks.hold("actor:1"):
                raise RuntimeError("boom")

        assert len(locks) == 0
