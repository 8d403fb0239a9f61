"""Cooperative cancellation primitives for loop runs.

A :class:`CancellationSource` owns the ability to cancel; the
:class:`CancellationToken` it hands out can only observe. The loop checks the
token at well-defined points and forwards it unchanged to the Model Gateway
and the Tool Registry.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

__all__ = [
    "CancellationToken",
    "CancellationSource",
    "OperationCancelledError",
    "run_cancellable",
]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class OperationCancelledError(Exception):
    """Raised when an awaited operation is abandoned because its token fired."""

    def __init__(self, operation: str = "") -> None:
        self.operation = operation
        message = f"Operation '{operation}' was cancelled" if operation else "Operation was cancelled"
        super().__init__(message)


class CancellationToken:
    """Read-only view of a cancellation signal."""

    def __init__(self) -> None:
        self._cancelled = False
        self._event: asyncio.Event | None = None
        self._callbacks: list[Callable[[], Any]] = []

    @classmethod
    def none(cls) -> CancellationToken:
        """Return a token that is never signalled."""
        return cls()

    @property
    def is_cancellation_requested(self) -> bool:
        return self._cancelled

    def add_callback(self, callback: Callable[[], Any]) -> None:
        """Run ``callback`` once the token fires (immediately if it already has)."""
        if self._cancelled:
            callback()
            return
        self._callbacks.append(callback)

    async def wait(self) -> None:
        """Suspend until the token is signalled."""
        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()

    def _signal(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._event is not None:
            self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                LOGGER.debug("Cancellation callback raised", exc_info=True)


class CancellationSource:
    """Owner of a :class:`CancellationToken`.

    Example:
        >>> source = CancellationSource()
        >>> source.cancel_after(30.0)
        >>> result = await runner.run(context, messages, tools, token=source.token)
    """

    def __init__(self) -> None:
        self._token = CancellationToken()
        self._timer: asyncio.TimerHandle | None = None

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def is_cancellation_requested(self) -> bool:
        return self._token.is_cancellation_requested

    def cancel(self) -> None:
        """Signal the token. Safe to call more than once."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._token._signal()

    def cancel_after(self, seconds: float) -> None:
        """Schedule :meth:`cancel` on the running event loop."""
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(max(0.0, seconds), self.cancel)


async def run_cancellable(
    awaitable: Awaitable[T],
    token: CancellationToken,
    *,
    operation: str = "",
) -> T:
    """Await ``awaitable`` unless ``token`` fires first.

    Raises:
        OperationCancelledError: If the token fires before the awaitable completes.
    """
    if token.is_cancellation_requested:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise OperationCancelledError(operation)

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except BaseException:
        task.cancel()
        waiter.cancel()
        raise

    if task in done:
        waiter.cancel()
        return task.result()

    task.cancel()
    try:
        await task
    except (asyncio.CancelledError, Exception):
        LOGGER.debug("Abandoned operation %s finished after cancellation", operation or "<anonymous>")
    raise OperationCancelledError(operation)
