"""Tests for cancellation primitives."""

from __future__ import annotations

import asyncio

import pytest

from switchboard.ai.orchestration.cancellation import (
    CancellationSource,
    CancellationToken,
    OperationCancelledError,
    run_cancellable,
)


class TestCancellationToken:
    def test_none_token_is_never_cancelled(self):
        assert not CancellationToken.none().is_cancellation_requested

    def test_cancel_sets_flag(self, cancellation: CancellationSource):
        cancellation.cancel()

        assert cancellation.token.is_cancellation_requested
        assert cancellation.is_cancellation_requested

    def test_cancel_is_idempotent(self, cancellation: CancellationSource):
        fired: list[int] = []
        cancellation.token.add_callback(lambda: fired.append(1))

        cancellation.cancel()
        cancellation.cancel()

        assert fired == [1]

    def test_callback_after_cancel_runs_immediately(self, cancellation: CancellationSource):
        cancellation.cancel()
        fired: list[int] = []

        cancellation.token.add_callback(lambda: fired.append(1))

        assert fired == [1]

    def test_raising_callback_does_not_block_others(self, cancellation: CancellationSource):
        fired: list[str] = []

        def broken() -> None:
            raise RuntimeError("boom")

        cancellation.token.add_callback(broken)
        cancellation.token.add_callback(lambda: fired.append("second"))
        cancellation.cancel()

        assert fired == ["second"]

    @pytest.mark.asyncio
    async def test_wait_returns_after_cancel(self, cancellation: CancellationSource):
        waiter = asyncio.ensure_future(cancellation.token.wait())
        await asyncio.sleep(0)
        assert not waiter.done()

        cancellation.cancel()
        await asyncio.wait_for(waiter, timeout=1.0)

    @pytest.mark.asyncio
    async def test_cancel_after(self, cancellation: CancellationSource):
        cancellation.cancel_after(0.01)

        await asyncio.wait_for(cancellation.token.wait(), timeout=1.0)

        assert cancellation.is_cancellation_requested


class TestRunCancellable:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def work() -> int:
            return 42

        assert await run_cancellable(work(), CancellationToken.none()) == 42

    @pytest.mark.asyncio
    async def test_propagates_errors(self):
        async def work() -> int:
            raise ValueError("bad input")

        with pytest.raises(ValueError, match="bad input"):
            await run_cancellable(work(), CancellationToken.none())

    @pytest.mark.asyncio
    async def test_already_cancelled_never_starts(self, cancellation: CancellationSource):
        started: list[bool] = []

        async def work() -> None:
            started.append(True)

        cancellation.cancel()
        with pytest.raises(OperationCancelledError) as excinfo:
            await run_cancellable(work(), cancellation.token, operation="query")

        assert started == []
        assert excinfo.value.operation == "query"
        assert "query" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_abandons_slow_work(self, cancellation: CancellationSource):
        finished: list[bool] = []

        async def slow() -> None:
            await asyncio.sleep(10)
            finished.append(True)

        cancellation.cancel_after(0.01)
        with pytest.raises(OperationCancelledError):
            await run_cancellable(slow(), cancellation.token)

        assert finished == []
