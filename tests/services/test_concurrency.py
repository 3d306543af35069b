"""Tests for the concurrency limiter."""

import asyncio

import pytest

from convosim.services.concurrency import ConcurrencyLimiter, resolve_concurrency


class TestResolveConcurrency:
    """Ceiling resolution from explicit values and env."""

    def test_default(self, monkeypatch):
        monkeypatch.delenv("MAX_CONCURRENCY", raising=False)
        assert resolve_concurrency() == 5

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("MAX_CONCURRENCY", "12")
        assert resolve_concurrency() == 12

    def test_invalid_env_falls_back(self, monkeypatch):
        monkeypatch.setenv("MAX_CONCURRENCY", "lots")
        assert resolve_concurrency() == 5

    def test_clamped_to_one(self):
        assert resolve_concurrency(0) == 1
        assert resolve_concurrency("-3") == 1


class TestConcurrencyLimiter:
    """Bounded parallelism with a FIFO queue."""

    def test_rejects_ceiling_below_one(self):
        with pytest.raises(ValueError):
            ConcurrencyLimiter(0)

    async def test_never_exceeds_ceiling(self):
        limiter = ConcurrencyLimiter(2)
        running = 0
        peak = 0

        async def work():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        await asyncio.gather(*(limiter.schedule(work) for _ in range(8)))

        assert peak == 2
        assert limiter.active == 0
        assert limiter.waiting == 0

    async def test_queued_tasks_start_in_submission_order(self):
        limiter = ConcurrencyLimiter(1)
        started: list[int] = []

        def make(i: int):
            async def work():
                started.append(i)
                await asyncio.sleep(0)
            return work

        await asyncio.gather(*(limiter.schedule(make(i)) for i in range(5)))

        assert started == [0, 1, 2, 3, 4]

    async def test_returns_task_result(self):
        limiter = ConcurrencyLimiter(3)

        async def answer():
            return 42

        assert await limiter.schedule(answer) == 42

    async def test_failure_only_reaches_its_own_caller(self):
        """A failing task releases its slot and siblings still run."""
        limiter = ConcurrencyLimiter(1)

        async def boom():
            raise RuntimeError("boom")

        async def ok():
            return "ok"

        results = await asyncio.gather(
            limiter.schedule(boom),
            limiter.schedule(ok),
            limiter.schedule(ok),
            return_exceptions=True,
        )

        assert isinstance(results[0], RuntimeError)
        assert results[1:] == ["ok", "ok"]
        assert limiter.active == 0

    async def test_factory_not_invoked_until_admitted(self):
        limiter = ConcurrencyLimiter(1)
        gate = asyncio.Event()
        invoked: list[str] = []

        async def blocker():
            invoked.append("blocker")
            await gate.wait()

        def second():
            invoked.append("second")
            return asyncio.sleep(0)

        first_task = asyncio.create_task(limiter.schedule(blocker))
        second_task = asyncio.create_task(limiter.schedule(second))
        await asyncio.sleep(0.01)

        assert invoked == ["blocker"]
        assert limiter.active == 1
        assert limiter.waiting == 1

        gate.set()
        await asyncio.gather(first_task, second_task)
        assert invoked == ["blocker", "second"]
