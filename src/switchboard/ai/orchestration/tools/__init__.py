"""In-process tool system.

Exports the tool protocol, the callable-backed tool, and the local registry.
"""

from .types import (
    ToolHandler,
    AsyncToolHandler,
    Tool,
    SimpleTool,
    format_tool_result_content,
    to_content_parts,
)
from .registry import (
    LocalToolRegistry,
    ToolRegistration,
    DuplicateToolError,
    ToolNotFoundError,
)

__all__ = [
    # Types
    "ToolHandler",
    "AsyncToolHandler",
    "Tool",
    "SimpleTool",
    "format_tool_result_content",
    "to_content_parts",
    # Registry
    "LocalToolRegistry",
    "ToolRegistration",
    "DuplicateToolError",
    "ToolNotFoundError",
]
