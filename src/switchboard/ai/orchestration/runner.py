"""Loop Runner: drives the bounded model ↔ tool exchange.

This module provides the ToolLoopRunner class, a sequential state machine
that alternates Model Gateway rounds with tool execution until the model
stops requesting tools, the iteration cap is reached, or the run is
cancelled. Each tool round appends exactly one assistant turn holding all
calls and one user turn holding all results, in call order.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, replace
from typing import Any, Sequence

from .cancellation import CancellationToken
from .context import LoopContext
from .pipeline.invoke import cancelled_tool_call, invoke_tool
from .pipeline.stream import RoundOutput, stream_round
from .types import (
    DEFAULT_MAX_ITERATIONS,
    ContentPart,
    ConversationMessage,
    LoopResult,
    LoopState,
    RequestOptions,
    TerminationReason,
    TextPart,
    ToolCallRecord,
    ToolDescriptor,
    ToolMode,
)

__all__ = [
    "ToolLoopRunner",
    "RunnerConfig",
    "create_runner",
    "ITERATION_CAP_NOTICE",
    "CANCELLATION_NOTICE",
]

LOGGER = logging.getLogger(__name__)

ITERATION_CAP_NOTICE = "_Note: Reached maximum tool calling iterations._"
CANCELLATION_NOTICE = "_Request cancelled._"


# -----------------------------------------------------------------------------
# Runner Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class RunnerConfig:
    """Configuration for the loop runner.

    Attributes:
        max_iterations: Maximum tool rounds before the loop stops.
        tool_mode: Tool mode sent with every tool-bearing request.
        log_rounds: Whether to log each round at debug level.
        announce_cancellation: Whether to emit a notice when cancelled.
    """

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    tool_mode: ToolMode = ToolMode.AUTO
    log_rounds: bool = True
    announce_cancellation: bool = False

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")

    def with_updates(self, **kwargs: Any) -> RunnerConfig:
        """Return a new RunnerConfig with updated values."""
        return replace(self, **kwargs)


# -----------------------------------------------------------------------------
# Loop Runner
# -----------------------------------------------------------------------------


class ToolLoopRunner:
    """Runs the agentic tool loop.

    The runner holds only configuration; collaborators arrive per call in a
    :class:`LoopContext`, so one runner can serve concurrent conversations.

    Example:
        >>> runner = ToolLoopRunner()
        >>> context = LoopContext(gateway=gateway, registry=registry, sink=sink)
        >>> result = await runner.run(context, messages, registry.list_tools())
        >>> result.reason
        <TerminationReason.NATURAL_STOP: 'natural_stop'>
    """

    def __init__(self, config: RunnerConfig | None = None) -> None:
        self._config = config or RunnerConfig()

    @property
    def config(self) -> RunnerConfig:
        """The runner configuration."""
        return self._config

    def with_config(self, config: RunnerConfig) -> ToolLoopRunner:
        """Return a new runner with the specified config."""
        return ToolLoopRunner(config)

    async def run(
        self,
        context: LoopContext,
        messages: list[ConversationMessage],
        tools: Sequence[ToolDescriptor],
        *,
        token: CancellationToken | None = None,
        max_iterations: int | None = None,
        user_prompt: str | None = None,
    ) -> LoopResult:
        """Drive rounds until a natural stop, the iteration cap, or cancellation.

        Args:
            context: Collaborators for this run.
            messages: Caller-owned conversation; tool rounds are appended to it.
            tools: Tools offered to the model for the whole run.
            token: Cancellation token, forwarded to gateway and registry.
            max_iterations: Overrides the configured cap for this run.
            user_prompt: Prompt that started the run, used by the conclusion
                enforcer when the context carries one.

        Returns:
            LoopResult describing the run.

        Raises:
            ValueError: If ``max_iterations`` is below 1.
            Exception: Any Model Gateway failure, unchanged.
        """
        limit = self._config.max_iterations if max_iterations is None else max_iterations
        if limit < 1:
            raise ValueError("max_iterations must be at least 1")

        token = token or CancellationToken.none()
        state = LoopState(max_iterations=limit)
        run_id = uuid.uuid4().hex[:8]
        tool_set = tuple(tools)
        descriptors = {tool.name: tool for tool in tool_set}
        options = RequestOptions(tools=tool_set, tool_mode=self._config.tool_mode)

        text_chunks: list[str] = []
        pending_text = ""
        records: list[ToolCallRecord] = []
        rounds = 0
        started = time.perf_counter()

        LOGGER.debug(
            "Starting loop %s with %d tool(s), max_iterations=%d",
            run_id,
            len(tool_set),
            limit,
        )

        while True:
            if token.is_cancellation_requested:
                state.cancelled = True
                reason = TerminationReason.CANCELLED
                break

            rounds += 1
            if self._config.log_rounds:
                LOGGER.debug("Loop %s round %d", run_id, rounds)

            output = await stream_round(context, messages, options, token)
            if output.text:
                text_chunks.append(output.text)

            if output.cancelled:
                state.cancelled = True
                reason = TerminationReason.CANCELLED
                break

            if not output.has_tool_calls:
                pending_text = output.text
                reason = TerminationReason.NATURAL_STOP
                break

            records.extend(await self._run_tools(context, messages, output, descriptors, token))

            # The cap is checked before cancellation: a token that fires during the
            # last permitted round still ends the run as iteration_cap.
            state.iteration += 1
            if state.cap_reached:
                LOGGER.warning("Loop %s reached max iterations (%d)", run_id, limit)
                context.sink.emit_warning(ITERATION_CAP_NOTICE)
                reason = TerminationReason.ITERATION_CAP
                break

        if state.cancelled and self._config.announce_cancellation:
            context.sink.emit_warning(CANCELLATION_NOTICE)

        text = "".join(text_chunks)
        conclusion_text: str | None = None
        enforcer = context.conclusion_enforcer
        if enforcer is not None and user_prompt and reason is not TerminationReason.CANCELLED:
            conclusion_text = await enforcer.maybe_enforce(
                context, user_prompt, text, messages, token, pending_text=pending_text
            )

        LOGGER.info(
            "Loop %s finished: reason=%s rounds=%d tool_calls=%d duration=%.1fms",
            run_id,
            reason.value,
            rounds,
            len(records),
            (time.perf_counter() - started) * 1000,
        )
        return LoopResult(
            messages=messages,
            reason=reason,
            rounds=rounds,
            text=text,
            tool_records=tuple(records),
            conclusion_text=conclusion_text,
        )

    async def _run_tools(
        self,
        context: LoopContext,
        messages: list[ConversationMessage],
        output: RoundOutput,
        descriptors: dict[str, ToolDescriptor],
        token: CancellationToken,
    ) -> list[ToolCallRecord]:
        """Invoke the round's calls in order and append the paired turns."""
        if self._config.log_rounds:
            LOGGER.debug("Executing %d tool call(s)", len(output.tool_calls))

        results: list[ContentPart] = []
        records: list[ToolCallRecord] = []
        for call in output.tool_calls:
            if token.is_cancellation_requested:
                # Unstarted calls are answered as cancelled so every call keeps a result.
                outcome, record = cancelled_tool_call(call)
            else:
                outcome, record = await invoke_tool(context, call, descriptors.get(call.name), token)
            results.append(outcome.to_part(call.id))
            records.append(record)

        assistant_parts: list[ContentPart] = []
        if output.text:
            assistant_parts.append(TextPart(output.text))
        assistant_parts.extend(output.tool_calls)

        messages.append(ConversationMessage.assistant(assistant_parts))
        messages.append(ConversationMessage.user(results))
        return records


# -----------------------------------------------------------------------------
# Factory Functions
# -----------------------------------------------------------------------------


def create_runner(
    *,
    max_iterations: int | None = None,
    tool_mode: ToolMode | None = None,
    announce_cancellation: bool = False,
) -> ToolLoopRunner:
    """Create a ToolLoopRunner with the specified configuration.

    Example:
        >>> runner = create_runner(max_iterations=5)
    """
    config = RunnerConfig(
        max_iterations=max_iterations if max_iterations is not None else DEFAULT_MAX_ITERATIONS,
        tool_mode=tool_mode or ToolMode.AUTO,
        announce_cancellation=announce_cancellation,
    )
    return ToolLoopRunner(config)
