"""Pipeline stage: Stream.

Requests one round from the Model Gateway and consumes its fragment stream,
routing text straight to the Output Sink and buffering tool calls in the
order they arrive.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, Sequence, assert_never, runtime_checkable

from ..cancellation import CancellationToken
from ..types import ConversationMessage, Fragment, RequestOptions, TextPart, ToolCallPart

if TYPE_CHECKING:
    from ..context import LoopContext

__all__ = [
    "ModelGateway",
    "RoundOutput",
    "stream_round",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class ModelGateway(Protocol):
    """Protocol for streaming conversational models.

    Each call produces a fresh, one-shot stream tied to a single round. The
    stream yields :class:`TextPart` and :class:`ToolCallPart` fragments in
    emission order and ends when the model finishes its turn. Failures raised
    by ``send_request`` or while iterating propagate to the caller of the loop.
    """

    async def send_request(
        self,
        messages: Sequence[ConversationMessage],
        options: RequestOptions,
        token: CancellationToken,
    ) -> AsyncIterator[Fragment]:
        ...


# -----------------------------------------------------------------------------
# Round Output
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class RoundOutput:
    """What one streamed round produced.

    Attributes:
        text: Text emitted during the round, in stream order.
        tool_calls: Tool calls in the order received.
        cancelled: Whether cancellation was observed mid-stream.
    """

    text: str = ""
    tool_calls: tuple[ToolCallPart, ...] = ()
    cancelled: bool = False

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


# -----------------------------------------------------------------------------
# Streaming
# -----------------------------------------------------------------------------


async def stream_round(
    context: LoopContext,
    messages: Sequence[ConversationMessage],
    options: RequestOptions,
    token: CancellationToken,
    *,
    accept_tool_calls: bool = True,
) -> RoundOutput:
    """Run one Model Gateway round to completion.

    Args:
        context: Collaborators for this run.
        messages: Conversation to send. Not mutated.
        options: Tools and tool mode for the request.
        token: Cancellation token, forwarded to the gateway.
        accept_tool_calls: When False, tool-call fragments are dropped.

    Returns:
        The round's text, buffered tool calls, and cancellation flag.
    """
    stream = await context.gateway.send_request(tuple(messages), options, token)

    text_chunks: list[str] = []
    tool_calls: list[ToolCallPart] = []
    cancelled = False

    try:
        async for fragment in stream:
            if isinstance(fragment, TextPart):
                if fragment.value:
                    text_chunks.append(fragment.value)
                    context.sink.emit_text(fragment.value)
            elif isinstance(fragment, ToolCallPart):
                if accept_tool_calls:
                    tool_calls.append(fragment)
                else:
                    LOGGER.warning("Ignoring tool call %s in a tool-free round", fragment.name)
            else:
                assert_never(fragment)

            if token.is_cancellation_requested:
                cancelled = True
                break
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()

    if cancelled:
        LOGGER.debug("Cancellation observed mid-stream after %d tool call(s)", len(tool_calls))

    return RoundOutput(
        text="".join(text_chunks),
        tool_calls=tuple(tool_calls),
        cancelled=cancelled,
    )
