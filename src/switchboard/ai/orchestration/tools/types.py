"""Tool system types for the in-process registry.

This module defines the tool protocol and the simple callable-backed tool
used by :class:`~switchboard.ai.orchestration.tools.registry.LocalToolRegistry`.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Mapping, Protocol, Sequence, runtime_checkable

from ..types import ContentPart, TextPart, ToolCallPart, ToolDescriptor, ToolResultPart

__all__ = [
    "ToolHandler",
    "AsyncToolHandler",
    "Tool",
    "SimpleTool",
    "format_tool_result_content",
    "to_content_parts",
]


# -----------------------------------------------------------------------------
# Tool Handler Types
# -----------------------------------------------------------------------------

# Synchronous tool handler
ToolHandler = Callable[[Mapping[str, Any]], Any]

# Asynchronous tool handler
AsyncToolHandler = Callable[[Mapping[str, Any]], Coroutine[Any, Any, Any]]


# -----------------------------------------------------------------------------
# Tool Protocol
# -----------------------------------------------------------------------------


@runtime_checkable
class Tool(Protocol):
    """Protocol for tool implementations.

    Attributes:
        name: Unique identifier for the tool.
        descriptor: Name, description, and input schema shown to the model.
    """

    @property
    def name(self) -> str:
        ...

    @property
    def descriptor(self) -> ToolDescriptor:
        ...

    async def execute(self, arguments: Mapping[str, Any]) -> Any:
        """Execute the tool; any return value is normalized to content parts."""
        ...


# -----------------------------------------------------------------------------
# Result Normalization
# -----------------------------------------------------------------------------


def format_tool_result_content(result: Any) -> str:
    """Format a raw tool return value as text for the model."""
    if result is None:
        return "null"

    if isinstance(result, str):
        return result

    if isinstance(result, bool):
        return "true" if result else "false"

    if isinstance(result, (int, float)):
        return str(result)

    if isinstance(result, (dict, list, tuple)):
        try:
            return json.dumps(result, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            return str(result)

    # Check for to_dict method
    if hasattr(result, "to_dict") and callable(result.to_dict):
        try:
            return json.dumps(result.to_dict(), ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            pass

    return str(result)


def to_content_parts(result: Any) -> tuple[ContentPart, ...]:
    """Normalize a tool return value into content parts.

    Content parts (alone or as a sequence made only of parts) are kept as
    they are; anything else becomes a single text part.
    """
    if isinstance(result, (TextPart, ToolCallPart, ToolResultPart)):
        return (result,)
    if isinstance(result, Sequence) and not isinstance(result, str) and result:
        if all(isinstance(item, (TextPart, ToolCallPart, ToolResultPart)) for item in result):
            return tuple(result)
    return (TextPart(format_tool_result_content(result)),)


# -----------------------------------------------------------------------------
# Simple Tool Implementation
# -----------------------------------------------------------------------------


@dataclass
class SimpleTool:
    """Tool wrapping a plain callable.

    Example:
        def lookup(args):
            return {"customer": args.get("id")}

        tool = SimpleTool(
            descriptor=ToolDescriptor(name="lookup", description="Look up a customer"),
            handler=lookup,
        )
    """

    descriptor: ToolDescriptor
    handler: ToolHandler | AsyncToolHandler
    _is_async: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        self._is_async = asyncio.iscoroutinefunction(self.handler)

    @property
    def name(self) -> str:
        """Get the tool's name from its descriptor."""
        return self.descriptor.name

    async def execute(self, arguments: Mapping[str, Any]) -> Any:
        """Execute the tool handler."""
        if self._is_async:
            return await self.handler(arguments)  # type: ignore[misc]
        return self.handler(arguments)
