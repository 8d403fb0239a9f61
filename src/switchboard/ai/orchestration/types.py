"""Core type definitions for the tool-orchestration loop.

This module defines the conversation vocabulary shared by every stage of the
loop: content parts, messages, tool descriptors, and the small value objects
that describe a run. Content parts form a closed union; consumers match on
them with ``isinstance`` and finish with :func:`typing.assert_never` so a new
variant is flagged at every consumption site.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Mapping, Sequence, Union, assert_never

__all__ = [
    # Content parts
    "TextPart",
    "ToolCallPart",
    "ToolResultPart",
    "ContentPart",
    "Fragment",
    "text_length",
    # Messages
    "MessageRole",
    "ConversationMessage",
    "is_well_formed",
    # Tools
    "ToolDescriptor",
    "ToolMode",
    "RequestOptions",
    "ToolInvocationResult",
    "ToolResultOutcome",
    # Loop values
    "LoopState",
    "TruncationPolicy",
    "TerminationReason",
    "ToolCallRecord",
    "LoopResult",
    "DEFAULT_MAX_ITERATIONS",
    "DEFAULT_MAX_RESULT_BYTES",
]

DEFAULT_MAX_ITERATIONS = 10
DEFAULT_MAX_RESULT_BYTES = 100_000


# -----------------------------------------------------------------------------
# Content Parts
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TextPart:
    """A run of plain text."""

    value: str

    @property
    def kind(self) -> Literal["text"]:
        return "text"


@dataclass(slots=True, frozen=True)
class ToolCallPart:
    """A model-issued request to invoke a named tool.

    Attributes:
        id: Identifier pairing this call with its result.
        name: Name of the tool to invoke.
        input: Input payload, already decoded from JSON.
    """

    id: str
    name: str
    input: Mapping[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> Literal["toolCall"]:
        return "toolCall"


@dataclass(slots=True, frozen=True)
class ToolResultPart:
    """The outcome of a tool call, paired to it by ``call_id``.

    Attributes:
        call_id: The ``id`` of the :class:`ToolCallPart` this answers.
        parts: Result content.
        ok: False when the result describes a contained failure.
    """

    call_id: str
    parts: tuple[ContentPart, ...] = ()
    ok: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.parts, tuple):
            object.__setattr__(self, "parts", tuple(self.parts))

    @property
    def kind(self) -> Literal["toolResult"]:
        return "toolResult"

    @property
    def text(self) -> str:
        """Concatenated text of the text-bearing result parts."""
        return "".join(p.value for p in self.parts if isinstance(p, TextPart))


ContentPart = Union[TextPart, ToolCallPart, ToolResultPart]

# Items a Model Gateway stream may yield.
Fragment = Union[TextPart, ToolCallPart]


def text_length(part: ContentPart) -> int:
    """Return the number of characters a part contributes to a payload."""
    if isinstance(part, TextPart):
        return len(part.value)
    if isinstance(part, (ToolCallPart, ToolResultPart)):
        return 0
    assert_never(part)


# -----------------------------------------------------------------------------
# Messages
# -----------------------------------------------------------------------------

MessageRole = Literal["system", "user", "assistant"]


@dataclass(slots=True, frozen=True)
class ConversationMessage:
    """One conversation turn.

    Attributes:
        role: Who produced the turn.
        parts: Ordered content parts of the turn.
    """

    role: MessageRole
    parts: tuple[ContentPart, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.parts, tuple):
            object.__setattr__(self, "parts", tuple(self.parts))

    @classmethod
    def system(cls, content: str | Sequence[ContentPart]) -> ConversationMessage:
        """Create a system message."""
        return cls(role="system", parts=_coerce_parts(content))

    @classmethod
    def user(cls, content: str | Sequence[ContentPart]) -> ConversationMessage:
        """Create a user message."""
        return cls(role="user", parts=_coerce_parts(content))

    @classmethod
    def assistant(cls, content: str | Sequence[ContentPart]) -> ConversationMessage:
        """Create an assistant message."""
        return cls(role="assistant", parts=_coerce_parts(content))

    @property
    def text(self) -> str:
        """Concatenated top-level text of the message."""
        return "".join(p.value for p in self.parts if isinstance(p, TextPart))

    @property
    def tool_calls(self) -> tuple[ToolCallPart, ...]:
        return tuple(p for p in self.parts if isinstance(p, ToolCallPart))

    @property
    def tool_results(self) -> tuple[ToolResultPart, ...]:
        return tuple(p for p in self.parts if isinstance(p, ToolResultPart))


def _coerce_parts(content: str | Sequence[ContentPart]) -> tuple[ContentPart, ...]:
    if isinstance(content, str):
        return (TextPart(content),) if content else ()
    return tuple(content)


def is_well_formed(messages: Sequence[ConversationMessage]) -> bool:
    """Check that every tool call is answered exactly once, and only after it was issued.

    Returns False if any tool call lacks a matching later tool result with the
    identical id, or if a tool result appears without a preceding tool call.
    """
    pending: set[str] = set()
    for message in messages:
        for part in message.parts:
            if isinstance(part, ToolCallPart):
                if part.id in pending:
                    return False
                pending.add(part.id)
            elif isinstance(part, ToolResultPart):
                if part.call_id not in pending:
                    return False
                pending.discard(part.call_id)
            elif isinstance(part, TextPart):
                continue
            else:
                assert_never(part)
    return not pending


# -----------------------------------------------------------------------------
# Tools
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolDescriptor:
    """Interface of a registered tool as presented to the model.

    Attributes:
        name: Unique tool name.
        description: Human-readable description of what the tool does.
        input_schema: JSON Schema of the tool's input.
    """

    name: str
    description: str = ""
    input_schema: Mapping[str, Any] = field(default_factory=dict)


class ToolMode(str, Enum):
    """How strongly the model is steered towards calling tools."""

    AUTO = "auto"
    REQUIRED = "required"


@dataclass(slots=True, frozen=True)
class RequestOptions:
    """Options sent with each Model Gateway request."""

    tools: tuple[ToolDescriptor, ...] = ()
    tool_mode: ToolMode = ToolMode.AUTO

    def __post_init__(self) -> None:
        if not isinstance(self.tools, tuple):
            object.__setattr__(self, "tools", tuple(self.tools))


@dataclass(slots=True, frozen=True)
class ToolInvocationResult:
    """Raw content returned by a Tool Registry invocation."""

    content: tuple[ContentPart, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.content, tuple):
            object.__setattr__(self, "content", tuple(self.content))


@dataclass(slots=True, frozen=True)
class ToolResultOutcome:
    """Result of one contained tool invocation.

    Attributes:
        ok: Whether the tool completed.
        parts: Content to hand back to the model.
        diagnostic_text: Failure description when ``ok`` is False.
        truncated: Whether ``parts`` were shortened by the truncator.
    """

    ok: bool
    parts: tuple[ContentPart, ...]
    diagnostic_text: str | None = None
    truncated: bool = False

    @classmethod
    def success(cls, parts: Sequence[ContentPart], *, truncated: bool = False) -> ToolResultOutcome:
        return cls(ok=True, parts=tuple(parts), truncated=truncated)

    @classmethod
    def failure(cls, diagnostic_text: str) -> ToolResultOutcome:
        return cls(
            ok=False,
            parts=(TextPart(diagnostic_text),),
            diagnostic_text=diagnostic_text,
        )

    def to_part(self, call_id: str) -> ToolResultPart:
        """Wrap the outcome as the result part answering ``call_id``."""
        return ToolResultPart(call_id=call_id, parts=self.parts, ok=self.ok)


# -----------------------------------------------------------------------------
# Loop Values
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class LoopState:
    """Mutable per-run counters owned by the loop controller."""

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    iteration: int = 0
    cancelled: bool = False

    @property
    def cap_reached(self) -> bool:
        return self.iteration >= self.max_iterations


@dataclass(slots=True, frozen=True)
class TruncationPolicy:
    """Upper bound on the text a single tool result may carry."""

    max_bytes: int = DEFAULT_MAX_RESULT_BYTES

    def __post_init__(self) -> None:
        if self.max_bytes < 0:
            raise ValueError("max_bytes must be non-negative")


class TerminationReason(str, Enum):
    """Why a loop run stopped."""

    NATURAL_STOP = "natural_stop"
    ITERATION_CAP = "iteration_cap"
    CANCELLED = "cancelled"


@dataclass(slots=True, frozen=True)
class ToolCallRecord:
    """Record of a tool call execution.

    Attributes:
        call_id: Identifier of the call.
        name: Name of the tool that was called.
        arguments: Input passed to the tool.
        ok: Whether the tool completed.
        duration_ms: Execution time in milliseconds.
        error: Sanitized error message if the call failed.
        truncated: Whether the result was shortened.
    """

    call_id: str
    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)
    ok: bool = True
    duration_ms: float = 0.0
    error: str | None = None
    truncated: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for logging."""
        return {
            "call_id": self.call_id,
            "name": self.name,
            "arguments": dict(self.arguments),
            "ok": self.ok,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "truncated": self.truncated,
        }


@dataclass(slots=True, frozen=True)
class LoopResult:
    """Everything a loop run produced.

    Attributes:
        messages: The caller's message list (appended to in place).
        reason: Why the run stopped.
        rounds: Number of Model Gateway rounds issued by the loop.
        text: All model text streamed during the run, in order.
        tool_records: One record per executed tool call, in call order.
        conclusion_text: Text of the supplementary conclusion round, if one ran.
    """

    messages: list[ConversationMessage]
    reason: TerminationReason
    rounds: int
    text: str = ""
    tool_records: tuple[ToolCallRecord, ...] = ()
    conclusion_text: str | None = None

    @property
    def tool_call_count(self) -> int:
        return len(self.tool_records)
