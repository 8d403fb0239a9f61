"""Shared test helpers and stub classes.

Scripted stand-ins for the Model Gateway and the Tool Registry. Import from
here instead of duplicating these classes in individual test files.

Example:
    from tests.helpers import ScriptedGateway, FakeRegistry, make_context
"""

from __future__ import annotations

import inspect
from collections.abc import AsyncIterator
from typing import Any, Callable, Mapping, Sequence

from switchboard.ai.orchestration.cancellation import CancellationToken
from switchboard.ai.orchestration.context import LoopContext
from switchboard.ai.orchestration.sinks import RecordingOutputSink
from switchboard.ai.orchestration.types import (
    ConversationMessage,
    Fragment,
    RequestOptions,
    TextPart,
    ToolCallPart,
    ToolDescriptor,
    ToolInvocationResult,
)


class ScriptedGateway:
    """Model gateway replaying one scripted fragment list per round.

    Rounds past the end of the script answer with ``default_text`` and no
    tool calls. ``before_yield`` runs just before fragment ``position`` of
    round ``index`` is handed out.
    """

    def __init__(
        self,
        rounds: Sequence[Sequence[Fragment]] = (),
        *,
        default_text: str = "Done.",
        error: Exception | None = None,
        before_yield: Callable[[int, int], None] | None = None,
    ) -> None:
        self.rounds = [list(r) for r in rounds]
        self.default_text = default_text
        self.error = error
        self.before_yield = before_yield
        self.requests: list[tuple[tuple[ConversationMessage, ...], RequestOptions]] = []
        self.closed_streams = 0

    async def send_request(
        self,
        messages: Sequence[ConversationMessage],
        options: RequestOptions,
        token: CancellationToken,
    ) -> AsyncIterator[Fragment]:
        self.requests.append((tuple(messages), options))
        if self.error is not None:
            raise self.error
        index = len(self.requests) - 1
        if index < len(self.rounds):
            fragments = self.rounds[index]
        else:
            fragments = [TextPart(self.default_text)]
        return self._stream(index, fragments)

    async def _stream(self, index: int, fragments: Sequence[Fragment]) -> AsyncIterator[Fragment]:
        try:
            for position, fragment in enumerate(fragments):
                if self.before_yield is not None:
                    self.before_yield(index, position)
                yield fragment
        finally:
            self.closed_streams += 1


class FakeRegistry:
    """Tool registry backed by plain handlers keyed by tool name.

    Handlers receive the call input and may return a string, a
    :class:`ToolInvocationResult`, or an awaitable of either. Exceptions
    raised by a handler propagate out of ``invoke``.
    """

    def __init__(self, handlers: Mapping[str, Callable[[Mapping[str, Any]], Any]] | None = None) -> None:
        self.handlers = dict(handlers or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def list_tools(self) -> list[ToolDescriptor]:
        return [ToolDescriptor(name=name, description=f"{name} tool") for name in self.handlers]

    async def invoke(
        self,
        name: str,
        input: Mapping[str, Any],
        token: CancellationToken,
    ) -> ToolInvocationResult:
        self.calls.append((name, dict(input)))
        result = self.handlers[name](input)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, ToolInvocationResult):
            return result
        return ToolInvocationResult(content=(TextPart(str(result)),))


def call(call_id: str, name: str, **arguments: Any) -> ToolCallPart:
    """Shorthand for a tool-call fragment."""
    return ToolCallPart(id=call_id, name=name, input=arguments)


def make_context(
    gateway: ScriptedGateway,
    registry: FakeRegistry | None = None,
    **overrides: Any,
) -> tuple[LoopContext, RecordingOutputSink]:
    """Build a loop context that records sink output."""
    sink = RecordingOutputSink()
    context = LoopContext(gateway=gateway, registry=registry or FakeRegistry(), sink=sink)
    if overrides:
        context = context.with_updates(**overrides)
    return context, sink
