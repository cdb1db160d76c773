"""Tests for single-flight coordination."""

import asyncio

import pytest

from src.oauth.single_flight import SingleFlight


class TestSingleFlight:
    """Tests for SingleFlight class."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_execution(self):
        """Only the first caller runs the operation; all get its result."""
        flight = SingleFlight("test")
        calls = 0
        release = asyncio.Event()

        async def operation():
            nonlocal calls
            calls += 1
            await release.wait()
            return "result"

        waiters = [asyncio.ensure_future(flight.run(operation)) for _ in range(5)]
        await asyncio.sleep(0)
        assert flight.in_flight is True
        assert not any(w.done() for w in waiters)

        release.set()
        results = await asyncio.gather(*waiters)

        assert results == ["result"] * 5
        assert calls == 1
        assert flight.in_flight is False

    @pytest.mark.asyncio
    async def test_failure_is_shared_and_cleared(self):
        """All callers see the failure and the next call starts fresh."""
        flight = SingleFlight("test")
        attempts = 0

        async def failing():
            nonlocal attempts
            attempts += 1
            await asyncio.sleep(0.01)
            raise RuntimeError("boom")

        results = await asyncio.gather(
            flight.run(failing), flight.run(failing), return_exceptions=True
        )

        assert attempts == 1
        assert all(isinstance(r, RuntimeError) for r in results)
        assert flight.in_flight is False

        async def succeeding():
            return 42

        assert await flight.run(succeeding) == 42

    @pytest.mark.asyncio
    async def test_sequential_calls_run_separately(self):
        """Once an execution finishes, the next call runs the operation again."""
        flight = SingleFlight("test")
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1
            return calls

        assert await flight.run(operation) == 1
        assert await flight.run(operation) == 2

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_execution(self):
        """Cancelling one caller leaves the shared execution running."""
        flight = SingleFlight("test")
        release = asyncio.Event()

        async def operation():
            await release.wait()
            return "done"

        first = asyncio.ensure_future(flight.run(operation))
        second = asyncio.ensure_future(flight.run(operation))
        await asyncio.sleep(0)

        first.cancel()
        await asyncio.sleep(0)
        release.set()

        assert await second == "done"
        assert first.cancelled()
