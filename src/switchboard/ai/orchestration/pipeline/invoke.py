"""Pipeline stage: Invoke.

Executes one tool call against the Tool Registry with failure containment.
Whatever happens, the caller receives exactly one :class:`ToolResultOutcome`
so the call can be answered before the next model round.
"""

from __future__ import annotations

import logging
import re
import time
from typing import TYPE_CHECKING, Any, Mapping, Protocol, Sequence, runtime_checkable

from ..cancellation import CancellationToken, OperationCancelledError
from ..types import (
    ToolCallPart,
    ToolCallRecord,
    ToolDescriptor,
    ToolInvocationResult,
    ToolResultOutcome,
)
from .truncate import truncate

if TYPE_CHECKING:
    from ..context import LoopContext

__all__ = [
    "ToolRegistry",
    "DEFAULT_REMEDIATION_HINTS",
    "invoke_tool",
    "cancelled_tool_call",
    "CANCELLED_RESULT_TEXT",
    "sanitize_error_message",
    "format_failure_text",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_REMEDIATION_HINTS: tuple[str, ...] = (
    "The backend process that serves this tool may not be running.",
    "Check that the tool configuration is complete and valid.",
    "A network or connection error may have interrupted the call.",
)

CANCELLED_RESULT_TEXT = "Tool call '{name}' was cancelled before it completed."

_MAX_ERROR_CHARS = 500
_TOKEN_LIMIT_RE = re.compile(r"token limit", re.IGNORECASE)
_URL_CREDENTIALS_RE = re.compile(r"\b(https?://)[^\s:/@]+:[^\s@/]+@")
_BEARER_RE = re.compile(r"\b(Bearer)\s+[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE)
_SECRET_ASSIGNMENT_RE = re.compile(
    r"\b(api[_-]?key|access[_-]?token|client[_-]?secret|password|secret)(\s*[=:]\s*)[^\s,;&]+",
    re.IGNORECASE,
)
_API_KEY_RE = re.compile(r"\bsk-[A-Za-z0-9_\-]{8,}")
_EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_WHITESPACE_RE = re.compile(r"\s+")


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class ToolRegistry(Protocol):
    """Protocol for registries that expose and run tools.

    ``invoke`` may raise any exception; the invoker contains it.
    """

    def list_tools(self) -> Sequence[ToolDescriptor]:
        ...

    async def invoke(
        self,
        name: str,
        input: Mapping[str, Any],
        token: CancellationToken,
    ) -> ToolInvocationResult:
        ...


# -----------------------------------------------------------------------------
# Error Formatting
# -----------------------------------------------------------------------------


def sanitize_error_message(error: BaseException | str) -> str:
    """Return a single-line, credential-free rendering of ``error``."""
    if isinstance(error, BaseException):
        text = str(error) or type(error).__name__
    else:
        text = error or "Unknown error"
    text = _URL_CREDENTIALS_RE.sub(r"\1[REDACTED]@", text)
    text = _BEARER_RE.sub(r"\1 [REDACTED]", text)
    text = _SECRET_ASSIGNMENT_RE.sub(r"\1\2[REDACTED]", text)
    text = _API_KEY_RE.sub("[REDACTED]", text)
    text = _EMAIL_RE.sub("[EMAIL_REDACTED]", text)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    if len(text) > _MAX_ERROR_CHARS:
        text = text[: _MAX_ERROR_CHARS - 3].rstrip() + "..."
    return text


def format_failure_text(
    tool_name: str,
    message: str,
    hints: Sequence[str] = DEFAULT_REMEDIATION_HINTS,
) -> str:
    """Build the tool-result text the model sees for a failed call."""
    lines = [f"Tool {tool_name} failed with error: {message}"]
    if hints:
        lines.append("")
        lines.append("This might be because:")
        lines.extend(f"- {hint}" for hint in hints)
    lines.append("")
    lines.append("Check the application log for details.")
    return "\n".join(lines)


def _warning_banner(tool_name: str, message: str) -> str:
    if _TOKEN_LIMIT_RE.search(message):
        return (
            f"⚠️ **Result too large** - The response from {tool_name} exceeded the token limit.\n\n"
            "**Solutions:**\n"
            "- Use filters to reduce the amount of data\n"
            "- Ask for specific items instead of everything\n"
            "- Focus on a shorter time period"
        )
    return f"⚠️ Tool {tool_name} failed: {message}"


# -----------------------------------------------------------------------------
# Invocation
# -----------------------------------------------------------------------------


async def invoke_tool(
    context: LoopContext,
    call: ToolCallPart,
    descriptor: ToolDescriptor | None,
    token: CancellationToken,
) -> tuple[ToolResultOutcome, ToolCallRecord]:
    """Execute a single tool call with failure containment.

    Args:
        context: Collaborators for this run.
        call: The tool call issued by the model.
        descriptor: Descriptor of the called tool, or None if the model named
            a tool outside the run's tool set.
        token: Cancellation token, forwarded to the registry.

    Returns:
        The contained outcome and a record of the call. Never raises for tool
        failures.
    """
    LOGGER.info("Tool call: %s (call_id=%s)", call.name, call.id)
    context.sink.emit_progress(f"Calling tool: {call.name}...")
    start_time = time.perf_counter()

    if descriptor is None:
        message = f"Unknown tool '{call.name}'. It is not among the tools available to this conversation."
        return _contain(context, call, message, start_time)

    try:
        result = await context.registry.invoke(descriptor.name, call.input, token)
    except OperationCancelledError:
        LOGGER.info("Tool %s abandoned: request cancelled", call.name)
        return cancelled_tool_call(call, start_time)
    except Exception as exc:
        LOGGER.warning("Tool %s failed: %s", call.name, exc, exc_info=LOGGER.isEnabledFor(logging.DEBUG))
        return _contain(context, call, sanitize_error_message(exc), start_time)

    parts = tuple(result.content)
    bounded = truncate(parts, context.truncation)
    truncated = bounded is not parts
    duration_ms = (time.perf_counter() - start_time) * 1000
    LOGGER.debug("Tool %s completed in %.1fms (%d part(s))", call.name, duration_ms, len(parts))
    if truncated:
        context.sink.emit_warning(
            "_ℹ️ Note: Result was truncated due to size. Use filters to reduce the amount of data._"
        )

    outcome = ToolResultOutcome.success(bounded, truncated=truncated)
    record = ToolCallRecord(
        call_id=call.id,
        name=call.name,
        arguments=call.input,
        ok=True,
        duration_ms=duration_ms,
        truncated=truncated,
    )
    return outcome, record


def _contain(
    context: LoopContext,
    call: ToolCallPart,
    message: str,
    start_time: float,
) -> tuple[ToolResultOutcome, ToolCallRecord]:
    duration_ms = (time.perf_counter() - start_time) * 1000
    context.sink.emit_warning(_warning_banner(call.name, message))
    outcome = ToolResultOutcome.failure(format_failure_text(call.name, message, context.remediation_hints))
    record = ToolCallRecord(
        call_id=call.id,
        name=call.name,
        arguments=call.input,
        ok=False,
        duration_ms=duration_ms,
        error=message,
    )
    return outcome, record


def cancelled_tool_call(
    call: ToolCallPart,
    start_time: float | None = None,
) -> tuple[ToolResultOutcome, ToolCallRecord]:
    """Answer ``call`` as cancelled without touching the sink.

    Cancellation is not a tool failure, so no banner and no remediation hints
    are produced; the result only keeps the conversation well formed.
    """
    duration_ms = 0.0 if start_time is None else (time.perf_counter() - start_time) * 1000
    outcome = ToolResultOutcome.failure(CANCELLED_RESULT_TEXT.format(name=call.name))
    record = ToolCallRecord(
        call_id=call.id,
        name=call.name,
        arguments=call.input,
        ok=False,
        duration_ms=duration_ms,
        error="cancelled",
    )
    return outcome, record
