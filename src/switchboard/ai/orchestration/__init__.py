"""Agentic tool-orchestration loop.

The loop drives a bounded, cancellable exchange between a Model Gateway and
a Tool Registry, keeping the conversation well-formed and containing every
tool failure as a result the model can read.
"""

# Core types
from .types import (
    TextPart,
    ToolCallPart,
    ToolResultPart,
    ContentPart,
    Fragment,
    text_length,
    MessageRole,
    ConversationMessage,
    is_well_formed,
    ToolDescriptor,
    ToolMode,
    RequestOptions,
    ToolInvocationResult,
    ToolResultOutcome,
    LoopState,
    TruncationPolicy,
    TerminationReason,
    ToolCallRecord,
    LoopResult,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_MAX_RESULT_BYTES,
)

# Cancellation
from .cancellation import (
    CancellationToken,
    CancellationSource,
    OperationCancelledError,
    run_cancellable,
)

# Output sinks
from .sinks import (
    OutputSink,
    SinkEvent,
    RecordingOutputSink,
    StreamOutputSink,
)

# Per-run collaborators
from .context import LoopContext

# Pipeline stages
from .pipeline import (
    ModelGateway,
    ToolRegistry,
    RoundOutput,
    stream_round,
    truncate,
    invoke_tool,
    cancelled_tool_call,
    sanitize_error_message,
    format_failure_text,
    DEFAULT_REMEDIATION_HINTS,
    RequestClassifier,
    KeywordClassifier,
    ConclusionPolicy,
    ConclusionEnforcer,
)

# Loop runner
from .runner import (
    ToolLoopRunner,
    RunnerConfig,
    create_runner,
    ITERATION_CAP_NOTICE,
    CANCELLATION_NOTICE,
)

# Tool system
from .tools import (
    Tool,
    SimpleTool,
    LocalToolRegistry,
    DuplicateToolError,
    ToolNotFoundError,
)

__all__ = [
    # Core types
    "TextPart",
    "ToolCallPart",
    "ToolResultPart",
    "ContentPart",
    "Fragment",
    "text_length",
    "MessageRole",
    "ConversationMessage",
    "is_well_formed",
    "ToolDescriptor",
    "ToolMode",
    "RequestOptions",
    "ToolInvocationResult",
    "ToolResultOutcome",
    "LoopState",
    "TruncationPolicy",
    "TerminationReason",
    "ToolCallRecord",
    "LoopResult",
    "DEFAULT_MAX_ITERATIONS",
    "DEFAULT_MAX_RESULT_BYTES",
    # Cancellation
    "CancellationToken",
    "CancellationSource",
    "OperationCancelledError",
    "run_cancellable",
    # Sinks
    "OutputSink",
    "SinkEvent",
    "RecordingOutputSink",
    "StreamOutputSink",
    # Context
    "LoopContext",
    # Pipeline
    "ModelGateway",
    "ToolRegistry",
    "RoundOutput",
    "stream_round",
    "truncate",
    "invoke_tool",
    "cancelled_tool_call",
    "sanitize_error_message",
    "format_failure_text",
    "DEFAULT_REMEDIATION_HINTS",
    "RequestClassifier",
    "KeywordClassifier",
    "ConclusionPolicy",
    "ConclusionEnforcer",
    # Runner
    "ToolLoopRunner",
    "RunnerConfig",
    "create_runner",
    "ITERATION_CAP_NOTICE",
    "CANCELLATION_NOTICE",
    # Tools
    "Tool",
    "SimpleTool",
    "LocalToolRegistry",
    "DuplicateToolError",
    "ToolNotFoundError",
]
